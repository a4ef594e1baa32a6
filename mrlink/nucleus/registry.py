# mrlink/nucleus/registry.py
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from mrlink.nucleus import naming
from mrlink.nucleus.protocol import Registration

logger = logging.getLogger(__name__)

RegistryListener = Callable[["ServiceRecord"], Any]


class ServiceRecord(BaseModel):
    """The last known snapshot of one remote service."""

    name: str
    id: str
    typeKey: str = ""
    state: Dict[str, Any] = Field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return naming.qualify(self.name, self.id)

    @property
    def simple_type(self) -> str:
        return naming.simple_name(self.typeKey)

    @property
    def capabilities(self) -> Dict[str, Any]:
        interfaces = self.state.get("interfaceSet")
        return interfaces if isinstance(interfaces, dict) else {}

    @classmethod
    def from_state(cls, state: Dict[str, Any], default_id: Optional[str] = None) -> "ServiceRecord":
        """
        Builds a record from a service's own state snapshot.

        The id comes from the state, then from a full ``name``, then from
        ``default_id``. A state that yields no id raises ``ValueError``.
        """
        name = state["name"]
        service_id = state.get("id")
        if not service_id:
            name, _, service_id = name.partition(naming.SEPARATOR)
        service_id = service_id or default_id
        if not service_id:
            raise ValueError(f"State for '{name}' carries no id and none was given.")
        type_key = state.get("typeKey") or state.get("serviceClass") or ""
        return cls(name=naming.short_name(name), id=service_id, typeKey=type_key, state=state)

    @classmethod
    def from_registration(cls, registration: Registration) -> "ServiceRecord":
        state = registration.decoded_state()
        return cls(name=registration.name, id=registration.id, typeKey=registration.typeKey, state=state)


class ServiceRegistry:
    """
    Full service name to last known ``ServiceRecord``.

    Keys are always full names; callers normalise before they get here.
    ``register`` replaces, it never merges.
    """

    def __init__(self):
        self._records: Dict[str, ServiceRecord] = {}
        self._service_types: Dict[str, Any] = {}
        self._added_listeners: List[RegistryListener] = []
        self._removed_listeners: List[RegistryListener] = []
        logger.info("ServiceRegistry initialized.")

    def register(self, record: ServiceRecord) -> None:
        full_name = record.full_name
        replaced = full_name in self._records
        self._records[full_name] = record
        if replaced:
            logger.debug(f"[Registry] Service '{full_name}' replaced.")
        else:
            logger.info(f"[Registry] Service '{full_name}' registered.")
        self._notify(self._added_listeners, record)

    def get(self, full_name: str) -> Optional[ServiceRecord]:
        return self._records.get(full_name)

    def remove(self, full_name: str) -> Optional[ServiceRecord]:
        record = self._records.pop(full_name, None)
        if record is None:
            logger.debug(f"[Registry] Release of unknown service '{full_name}' ignored.")
            return None
        logger.info(f"[Registry] Service '{full_name}' removed.")
        self._notify(self._removed_listeners, record)
        return record

    def by_capability(self, capability: str) -> List[ServiceRecord]:
        """Every record whose ``interfaceSet`` contains ``capability``."""
        return [record for record in self._records.values() if capability in record.capabilities]

    def names(self) -> List[str]:
        return list(self._records)

    def records(self) -> List[ServiceRecord]:
        return list(self._records.values())

    def snapshot(self) -> Dict[str, ServiceRecord]:
        return dict(self._records)

    def __contains__(self, full_name: object) -> bool:
        return full_name in self._records

    def __len__(self) -> int:
        return len(self._records)

    # --- Service type catalogue ---

    def set_service_type(self, simple_name: str, description: Any) -> None:
        self._service_types[simple_name] = description

    def get_service_types(self) -> Dict[str, Any]:
        return dict(self._service_types)

    def set_service_types(self, types: Dict[str, Any]) -> None:
        self._service_types = dict(types)

    # --- Observers ---

    def add_listener(self, on_added: Optional[RegistryListener] = None, on_removed: Optional[RegistryListener] = None) -> None:
        if on_added is not None:
            self._added_listeners.append(on_added)
        if on_removed is not None:
            self._removed_listeners.append(on_removed)

    def remove_listener(self, callback: RegistryListener) -> None:
        for listeners in (self._added_listeners, self._removed_listeners):
            if callback in listeners:
                listeners.remove(callback)

    def _notify(self, listeners: List[RegistryListener], record: ServiceRecord) -> None:
        for listener in list(listeners):
            try:
                listener(record)
            except Exception as e:
                logger.error(f"[Registry] Listener failed for '{record.full_name}': {e}", exc_info=True)
