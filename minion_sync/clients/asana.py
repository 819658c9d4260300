"""HTTP client for the Asana REST API."""
from __future__ import annotations

import logging
from typing import Collection, Dict, Iterable, List, Optional

import requests

from minion_sync.config import AsanaBackendSettings
from minion_sync.errors import BackendError
from minion_sync.models import Section, Tag, TaskItem
from minion_sync.clients.task_mapper import TASK_OPT_FIELDS, TaskMapper

LOGGER = logging.getLogger(__name__)

USER_AGENT = "minion-sync/0.1"


class AsanaAPIError(BackendError):
    """Asana API error."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AsanaClient:
    """Task backend over one Asana project."""

    def __init__(
        self,
        config: AsanaBackendSettings,
        session: Optional[requests.Session] = None,
        mapper: Optional[TaskMapper] = None,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {config.access_token}",
                "User-Agent": USER_AGENT,
                "Accept": "application/json",
            }
        )
        self._mapper = mapper or TaskMapper(project_id=config.project_id)
        self._tag_ids: Dict[str, str] = {}
        self._section_ids: Dict[str, str] = {}
        self._default_section: Optional[str] = None

    @property
    def base_url(self) -> str:
        return self._config.base_url.rstrip("/")

    # region low-level helpers
    def _request(self, method: str, endpoint: str, **kwargs) -> Dict:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        try:
            response = self._session.request(method, url, timeout=30, **kwargs)
        except requests.RequestException as exc:
            raise AsanaAPIError(f"Network error on {method} {url}: {exc}") from exc
        if response.status_code >= 400:
            raise AsanaAPIError(
                f"Asana API error {response.status_code} on {method} {url}: {response.text}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    def _iter_pages(self, endpoint: str, params: Dict[str, object]) -> Iterable[Dict]:
        params = dict(params)
        params.setdefault("limit", self._config.page_size)
        while True:
            payload = self._request("GET", endpoint, params=params)
            for element in payload.get("data") or []:
                yield element
            next_page = payload.get("next_page") or {}
            offset = next_page.get("offset")
            if not offset:
                break
            params["offset"] = offset

    # endregion

    # region tasks
    def list_tasks(self) -> List[TaskItem]:
        self.list_sections()
        elements = self._iter_pages(
            f"/projects/{self._config.project_id}/tasks",
            {"opt_fields": ",".join(TASK_OPT_FIELDS)},
        )
        return [self._map(element) for element in elements]

    def create_task(self, item: TaskItem, *, fields: Collection[str]) -> TaskItem:
        # Tags and section travel in the POST; a failed lookup must not leave a task behind.
        data = self._mapper.to_asana_payload(item, fields)
        if "tags" in fields and item.tags:
            data["tags"] = [self._tag_id(name) for name in sorted(item.tags)]
        if "section" in fields and item.section:
            data["memberships"] = [
                {"project": self._config.project_id, "section": self._section_id(item.section)}
            ]
        else:
            data["projects"] = [self._config.project_id]
        payload = self._request(
            "POST", "/tasks", json={"data": data}, params={"opt_fields": ",".join(TASK_OPT_FIELDS)}
        )
        created = self._map(payload)
        LOGGER.debug("Created Asana task %s", created.id)
        return created

    def update_task(self, task_id: str, item: TaskItem, *, fields: Collection[str]) -> TaskItem:
        data = self._mapper.to_asana_payload(item, fields)
        payload = self._request(
            "PUT",
            f"/tasks/{task_id}",
            json={"data": data},
            params={"opt_fields": ",".join(TASK_OPT_FIELDS)},
        )
        updated = self._map(payload)
        self._reconcile_memberships(updated, item, fields)
        return updated

    def delete_task(self, task_id: str) -> None:
        self._request("DELETE", f"/tasks/{task_id}")

    def _reconcile_memberships(self, current: TaskItem, item: TaskItem, fields: Collection[str]) -> None:
        if "tags" in fields:
            for name in sorted(item.tags - current.tags):
                self.add_tag_to_task(current.id, name)
            for name in sorted(current.tags - item.tags):
                self.remove_tag_from_task(current.id, name)
        if "section" in fields and item.section != current.section:
            # A task without a section lives in the first section of the project.
            section = item.section or self._default_section_name()
            if section is not None and section != current.section:
                self.move_task_to_section(current.id, section)

    def _map(self, payload: Dict) -> TaskItem:
        return self._mapper.map_task(payload, default_section=self._default_section)

    # endregion

    # region tags
    def list_tags(self) -> List[Tag]:
        elements = self._iter_pages(
            f"/workspaces/{self._config.workspace_id}/tags", {"opt_fields": "name"}
        )
        tags = [Tag(id=str(element["gid"]), name=element.get("name") or "") for element in elements]
        self._tag_ids = {tag.name: tag.id for tag in tags}
        return tags

    def create_tag(self, name: str) -> Tag:
        payload = self._request(
            "POST",
            f"/workspaces/{self._config.workspace_id}/tags",
            json={"data": {"name": name}},
        )
        data = payload.get("data") or {}
        tag = Tag(id=str(data["gid"]), name=data.get("name") or name)
        self._tag_ids[tag.name] = tag.id
        return tag

    def _tag_id(self, name: str) -> str:
        if name not in self._tag_ids:
            self.list_tags()
        try:
            return self._tag_ids[name]
        except KeyError:
            raise AsanaAPIError(f"Tag {name!r} does not exist in workspace {self._config.workspace_id}") from None

    def add_tag_to_task(self, task_id: str, tag_name: str) -> None:
        self._request("POST", f"/tasks/{task_id}/addTag", json={"data": {"tag": self._tag_id(tag_name)}})

    def remove_tag_from_task(self, task_id: str, tag_name: str) -> None:
        self._request("POST", f"/tasks/{task_id}/removeTag", json={"data": {"tag": self._tag_id(tag_name)}})

    # endregion

    # region sections
    def list_sections(self) -> List[Section]:
        elements = self._iter_pages(f"/projects/{self._config.project_id}/sections", {"opt_fields": "name"})
        sections = [Section(id=str(element["gid"]), name=element.get("name") or "") for element in elements]
        self._section_ids = {section.name: section.id for section in sections}
        self._default_section = sections[0].name if sections else None
        return sections

    def create_section(self, name: str) -> Section:
        payload = self._request(
            "POST",
            f"/projects/{self._config.project_id}/sections",
            json={"data": {"name": name}},
        )
        data = payload.get("data") or {}
        section = Section(id=str(data["gid"]), name=data.get("name") or name)
        self._section_ids[section.name] = section.id
        return section

    def _section_id(self, name: str) -> str:
        if name not in self._section_ids:
            self.list_sections()
        try:
            return self._section_ids[name]
        except KeyError:
            raise AsanaAPIError(f"Section {name!r} does not exist in project {self._config.project_id}") from None

    def _default_section_name(self) -> Optional[str]:
        if self._default_section is None:
            self.list_sections()
        return self._default_section

    def move_task_to_section(self, task_id: str, section_name: str) -> None:
        section_id = self._section_id(section_name)
        self._request("POST", f"/sections/{section_id}/addTask", json={"data": {"task": task_id}})


    # endregion


__all__ = ["AsanaClient", "AsanaAPIError"]
