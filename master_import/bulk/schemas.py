from typing import Optional

from pydantic import BaseModel, Field

from master_import.bulk.types import ImportOptions


class ExecuteRequest(BaseModel):
    continue_on_error: bool = False
    batch_size: Optional[int] = Field(default=None, ge=1)
    revalidate: bool = False
    background: bool = False
    imported_by: Optional[str] = None

    model_config = {"extra": "forbid"}

    def to_options(self) -> ImportOptions:
        return ImportOptions(
            continue_on_error=self.continue_on_error,
            batch_size=self.batch_size,
            revalidate=self.revalidate,
            imported_by=self.imported_by,
        )


class MultiExecuteRequest(ExecuteRequest):
    session_ids: list[str] = Field(min_length=1)


class SessionFromFileRequest(BaseModel):
    file_url: str
    file_name: Optional[str] = None
    created_by: Optional[str] = None

    model_config = {"extra": "forbid"}


class RollbackRequest(BaseModel):
    rolled_back_by: Optional[str] = None

    model_config = {"extra": "forbid"}
