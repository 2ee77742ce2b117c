"""
Project lifecycle: generating -> complete | partial | failed.

The project is written twice: once on creation, once on the single terminal
transition. Store failures raise PersistenceError after the in-memory state
has moved, so the caller can still answer the request.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from .errors import InvalidTransitionError, PersistenceError
from .models import Asset, GenerationError, Platform, Project, ProjectStatus
from .storage import MetadataStore


class ProjectStateMachine:

    def __init__(
        self,
        project: Project,
        store: MetadataStore,
        logger: Optional[logging.Logger] = None,
    ):
        self.project = project
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self.persisted = False

    @classmethod
    def create(
        cls,
        store: MetadataStore,
        project_id: str,
        user_id: str,
        prompt: str,
        platforms: Iterable[Platform],
        created_at: datetime,
        business_type: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "ProjectStateMachine":
        """
        Build a `generating` project. Does not write; call `persist_initial`.
        """
        project = Project(
            project_id=project_id,
            user_id=user_id,
            prompt=prompt,
            platforms=frozenset(platforms),
            created_at=created_at,
            business_type=business_type,
        )
        return cls(project, store, logger=logger)

    @property
    def status(self) -> ProjectStatus:
        return self.project.status

    def persist_initial(self) -> None:
        """
        Write the initial record.

        Raises:
            PersistenceError: If the metadata store rejects the write
        """
        try:
            self.store.put(self.project.to_record())
        except Exception as e:
            raise PersistenceError(
                f"Failed to create project {self.project.project_id}: {e}"
            ) from e
        self.persisted = True

    def finalize(
        self,
        status: ProjectStatus,
        assets: Iterable[Asset],
        errors: Iterable[GenerationError],
        completed_at: datetime,
    ) -> Project:
        """
        Apply the single terminal transition and write it.

        Raises:
            InvalidTransitionError: If the project is already terminal, or
                `status` is not terminal
            PersistenceError: If the metadata store rejects the write; the
                in-memory project is finalized regardless
        """
        if self.project.status.is_terminal:
            raise InvalidTransitionError(
                f"Project {self.project.project_id} is already {self.project.status.value}"
            )
        if not status.is_terminal:
            raise InvalidTransitionError(
                f"Cannot finalize project {self.project.project_id} to {status.value}"
            )

        self.project.status = status
        self.project.assets = list(assets)
        self.project.errors = list(errors)
        self.project.completed_at = completed_at

        self.logger.info(
            f"Project {self.project.project_id} finalized: status={status.value}, "
            f"assets={len(self.project.assets)}, errors={len(self.project.errors)}"
        )

        record = self.project.to_record()
        try:
            if self.persisted:
                self.store.update(
                    self.project.project_id,
                    {
                        "status": record["status"],
                        "completedAt": record["completedAt"],
                        "assets": record["assets"],
                        "errors": record["errors"],
                    },
                )
            else:
                # The create write never landed; write the whole record now
                self.store.put(record)
                self.persisted = True
        except Exception as e:
            raise PersistenceError(
                f"Failed to finalize project {self.project.project_id}: {e}"
            ) from e

        return self.project
