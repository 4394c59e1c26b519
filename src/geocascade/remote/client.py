"""HTTP client for the country/state/city catalog service."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from geocascade.errors import NetworkError, RemotePayloadError
from geocascade.kernel.types import NONE, Place, PlaceId, coerce_place_id

DEFAULT_COUNTRIES_PATH = "/countries"
DEFAULT_STATES_PATH = "/countries/{id}/states"
DEFAULT_CITIES_PATH = "/states/{id}/cities"
USER_AGENT = "geocascade/0.3"


def build_http_session(max_retries: int = 2, api_token: str = "") -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=max(0, int(max_retries)),
        backoff_factor=0.5,
        status_forcelist=(502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
    if api_token:
        session.headers["Authorization"] = "Bearer {0}".format(api_token)
    return session


class PlaceApiClient:
    """Fetches complete place lists; every failure surfaces as NetworkError."""

    def __init__(
        self,
        base_url: str,
        *,
        countries_path: str = DEFAULT_COUNTRIES_PATH,
        states_path: str = DEFAULT_STATES_PATH,
        cities_path: str = DEFAULT_CITIES_PATH,
        id_type: str = "int",
        connect_timeout: float = 10,
        read_timeout: float = 30,
        max_retries: int = 2,
        api_token: str = "",
        http: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = str(base_url or "").rstrip("/")
        self._countries_path = countries_path
        self._states_path = states_path
        self._cities_path = cities_path
        self._id_type = id_type
        self._timeout = (float(connect_timeout), float(read_timeout))
        self._http = http if http is not None else build_http_session(max_retries, api_token)

    @classmethod
    def from_settings(cls, settings: Any) -> "PlaceApiClient":
        return cls(
            settings.remote_base_url,
            countries_path=settings.remote_countries_path,
            states_path=settings.remote_states_path,
            cities_path=settings.remote_cities_path,
            id_type=settings.remote_id_type,
            connect_timeout=settings.remote_connect_timeout,
            read_timeout=settings.remote_read_timeout,
            max_retries=settings.remote_max_retries,
            api_token=settings.remote_api_token,
        )

    def fetch_countries(self, _parent_id: PlaceId = NONE) -> List[Place]:
        return self._fetch(self._countries_path, NONE)

    def fetch_states(self, country_id: PlaceId) -> List[Place]:
        return self._fetch(self._states_path, country_id)

    def fetch_cities(self, state_id: PlaceId) -> List[Place]:
        return self._fetch(self._cities_path, state_id)

    def close(self) -> None:
        self._http.close()

    def _fetch(self, path_template: str, parent_id: PlaceId) -> List[Place]:
        url = self._base_url + path_template.format(id=parent_id)
        try:
            response = self._http.get(url, timeout=self._timeout)
        except requests.Timeout as exc:
            raise NetworkError("remote request timed out", url=url, parent_id=parent_id) from exc
        except requests.RequestException as exc:
            raise NetworkError("remote request failed", url=url, parent_id=parent_id) from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise NetworkError(
                "remote returned HTTP {0}".format(response.status_code),
                url=url,
                parent_id=parent_id,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemotePayloadError("remote payload is not JSON", url=url) from exc
        return self._parse_places(payload, parent_id, url)

    def _parse_places(self, payload: Any, parent_id: PlaceId, url: str) -> List[Place]:
        rows = payload
        if isinstance(payload, dict):
            rows = payload.get("items", payload.get("data"))
        if not isinstance(rows, list):
            raise RemotePayloadError("unexpected payload shape", url=url)

        places: List[Place] = []
        for index, row in enumerate(rows):
            if not isinstance(row, dict):
                raise RemotePayloadError("entry is not an object", url=url, index=index)
            name = str(row.get("name") or "").strip()
            if not name:
                raise RemotePayloadError("entry has no name", url=url, index=index)
            try:
                place_id = coerce_place_id(row.get("id"), self._id_type)
            except ValueError as exc:
                raise RemotePayloadError("entry has invalid id", url=url, index=index) from exc
            places.append(Place(id=place_id, parent_id=parent_id, name=name))
        return places

    def describe(self) -> Dict[str, Any]:
        return {
            "base_url": self._base_url,
            "countries_path": self._countries_path,
            "states_path": self._states_path,
            "cities_path": self._cities_path,
            "id_type": self._id_type,
            "timeout": list(self._timeout),
        }
