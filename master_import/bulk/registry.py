import heapq
import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from master_import.bulk.errors import (
    CyclicDependencyError,
    DuplicateModuleError,
    MissingDependencyError,
    UnknownModuleError,
)
from master_import.bulk.service import BaseImportService
from master_import.bulk.types import ImportServiceMetadata
from master_import.db import models

logger = logging.getLogger("master_import.registry")


class ServiceRegistry:
    """Map of module name to import service plus its persisted catalog entry."""

    def __init__(self) -> None:
        self._services: Dict[str, BaseImportService] = {}
        self._discovery_lock = threading.Lock()
        self._status_lock = threading.Lock()

    def register(self, service: BaseImportService) -> BaseImportService:
        module = service.get_metadata().module
        if module in self._services:
            raise DuplicateModuleError(f"Import module '{module}' is already registered", details={"module": module})
        self._services[module] = service
        return service

    def get_service(self, module: str) -> BaseImportService:
        service = self._services.get(module)
        if not service:
            raise UnknownModuleError(f"Unknown import module '{module}'", details={"module": module})
        return service

    def modules(self) -> List[str]:
        return sorted(self._services)

    def metadata(self) -> Dict[str, ImportServiceMetadata]:
        return {name: service.get_metadata() for name, service in self._services.items()}

    def check_graph(self) -> None:
        """Raise when a dependency is unknown or the graph has a cycle."""
        graph = self.metadata()
        for name in sorted(graph):
            for dep in graph[name].dependencies:
                if dep not in graph:
                    raise MissingDependencyError(
                        f"Module '{name}' depends on unregistered module '{dep}'",
                        details={"module": name, "dependency": dep},
                    )
        cycle = _find_cycle({name: list(meta.dependencies) for name, meta in graph.items()})
        if cycle:
            raise CyclicDependencyError(cycle)

    def discover_all(self, db: Session) -> List[models.ImportServiceRegistry]:
        with self._discovery_lock:
            self.check_graph()
            now = datetime.utcnow()
            entries = []
            created = 0
            for name in self.modules():
                meta = self._services[name].get_metadata()
                entry = (
                    db.query(models.ImportServiceRegistry)
                    .filter(models.ImportServiceRegistry.module_name == name)
                    .first()
                )
                if not entry:
                    entry = models.ImportServiceRegistry(module_name=name, discovered_at=now, record_count=0)
                    db.add(entry)
                    created += 1
                entry.domain = meta.domain
                entry.subdomain = meta.subdomain
                entry.display_name = meta.display_name
                entry.description = meta.description
                entry.dependencies = list(meta.dependencies)
                entry.priority = meta.priority
                entry.tags = list(meta.tags)
                entry.supports_rollback = meta.supports_rollback
                entry.version = meta.version
                entry.updated_at = now
                entries.append(entry)
            db.commit()
        logger.info("import registry discovered modules=%s new=%s", len(entries), created)
        return entries

    def get_execution_order(self, module_names: Optional[Iterable[str]] = None) -> List[str]:
        graph = self.metadata()
        if module_names is None:
            wanted = set(graph)
        else:
            wanted = set()
            stack = list(module_names)
            while stack:
                name = stack.pop()
                if name not in graph:
                    raise UnknownModuleError(f"Unknown import module '{name}'", details={"module": name})
                if name in wanted:
                    continue
                wanted.add(name)
                stack.extend(graph[name].dependencies)

        for name in wanted:
            for dep in graph[name].dependencies:
                if dep not in graph:
                    raise MissingDependencyError(
                        f"Module '{name}' depends on unregistered module '{dep}'",
                        details={"module": name, "dependency": dep},
                    )

        pending = {name: len(set(graph[name].dependencies)) for name in wanted}
        dependents: Dict[str, List[str]] = {name: [] for name in wanted}
        for name in wanted:
            for dep in set(graph[name].dependencies):
                dependents[dep].append(name)

        ready = [(graph[name].priority, name) for name, count in pending.items() if count == 0]
        heapq.heapify(ready)
        order = []
        while ready:
            _, name = heapq.heappop(ready)
            order.append(name)
            for child in dependents[name]:
                pending[child] -= 1
                if pending[child] == 0:
                    heapq.heappush(ready, (graph[child].priority, child))

        if len(order) != len(wanted):
            leftover = {name: list(graph[name].dependencies) for name in wanted if name not in order}
            raise CyclicDependencyError(_find_cycle(leftover) or sorted(leftover))
        return order

    def dependents_of(self, module: str) -> List[str]:
        """Every module that depends on ``module``, directly or transitively."""
        graph = self.metadata()
        found = set()
        stack = [module]
        while stack:
            current = stack.pop()
            for name, meta in graph.items():
                if current in meta.dependencies and name not in found:
                    found.add(name)
                    stack.append(name)
        return sorted(found)

    def get_entry(self, db: Session, module: str) -> Optional[models.ImportServiceRegistry]:
        return (
            db.query(models.ImportServiceRegistry)
            .filter(models.ImportServiceRegistry.module_name == module)
            .first()
        )

    def list_entries(self, db: Session) -> List[models.ImportServiceRegistry]:
        return (
            db.query(models.ImportServiceRegistry)
            .order_by(models.ImportServiceRegistry.priority, models.ImportServiceRegistry.module_name)
            .all()
        )

    def update_status(self, db: Session, module: str, status: str, summary: Optional[dict] = None):
        summary = summary or {}
        with self._status_lock:
            entry = (
                db.query(models.ImportServiceRegistry)
                .filter(models.ImportServiceRegistry.module_name == module)
                .with_for_update()
                .first()
            )
            if not entry:
                raise UnknownModuleError(
                    f"Import module '{module}' has not been discovered", details={"module": module}
                )
            entry.import_status = status
            if summary.get("job_id"):
                entry.last_import_job_id = summary["job_id"]
            if summary.get("import_date"):
                entry.last_import_date = summary["import_date"]
            delta = int(summary.get("record_delta") or 0)
            if delta:
                entry.record_count = max(0, (entry.record_count or 0) + delta)
            entry.updated_at = datetime.utcnow()
            db.commit()
        logger.info(
            "import registry status module=%s status=%s record_count=%s",
            module,
            status,
            entry.record_count,
        )
        return entry


def _find_cycle(graph: Dict[str, List[str]]) -> Optional[List[str]]:
    visiting: List[str] = []
    done = set()

    def visit(node: str) -> Optional[List[str]]:
        if node in visiting:
            return visiting[visiting.index(node):] + [node]
        if node in done:
            return None
        visiting.append(node)
        for dep in sorted(graph.get(node, [])):
            if dep not in graph:
                continue
            cycle = visit(dep)
            if cycle:
                return cycle
        visiting.pop()
        done.add(node)
        return None

    for name in sorted(graph):
        cycle = visit(name)
        if cycle:
            return cycle
    return None


def build_default_registry() -> ServiceRegistry:
    from master_import.bulk.services.departments import DepartmentsImportService
    from master_import.bulk.services.drug_generics import DrugGenericsImportService
    from master_import.bulk.services.drugs import DrugsImportService
    from master_import.bulk.services.hospitals import HospitalsImportService

    registry = ServiceRegistry()
    registry.register(HospitalsImportService())
    registry.register(DepartmentsImportService())
    registry.register(DrugGenericsImportService())
    registry.register(DrugsImportService())
    return registry
