"""Error and result data models."""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, model_validator


T = TypeVar("T")


class Error(BaseModel):
    """Structured error with a `Category.Name` code and a readable message."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str

    @property
    def category(self) -> str:
        return self.code.split(".", 1)[0]

    @property
    def name(self) -> str:
        return self.code.split(".", 1)[-1]

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class Result(BaseModel, Generic[T]):
    """Outcome of an operation that can fail in an expected way."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    value: Optional[T] = None
    error: Optional[Error] = None

    @model_validator(mode="after")
    def _check_exclusive(self) -> "Result[T]":
        if self.error is not None and self.value is not None:
            raise ValueError("Result cannot carry both a value and an error")
        return self

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: Error) -> "Result[T]":
        if error is None:
            raise ValueError("failure() requires an error")
        return cls(error=error)

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None


class SourceControlErrors:
    """Errors raised by source-control gateways."""

    @staticmethod
    def branch_not_found(branch: str) -> Error:
        return Error(code="SourceControl.BranchNotFound", message=f"Branch '{branch}' does not exist")

    @staticmethod
    def api_error(detail: str) -> Error:
        return Error(code="SourceControl.ApiError", message=f"API call failed: {detail}")

    @staticmethod
    def unauthorized() -> Error:
        return Error(
            code="SourceControl.Unauthorized",
            message="API authentication failed, check the access token",
        )

    @staticmethod
    def rate_limit_exceeded() -> Error:
        return Error(
            code="SourceControl.RateLimitExceeded",
            message="API rate limit reached, try again later",
        )

    @staticmethod
    def network_error(detail: str = "") -> Error:
        message = "Network connection error"
        if detail:
            message = f"{message}: {detail}"
        return Error(code="SourceControl.NetworkError", message=message)

    @staticmethod
    def invalid_response() -> Error:
        return Error(code="SourceControl.InvalidResponse", message="API response could not be parsed")

    @staticmethod
    def project_not_found(project_path: str) -> Error:
        return Error(
            code="SourceControl.ProjectNotFound",
            message=f"Project '{project_path}' does not exist",
        )


class AzureDevOpsErrors:
    """Errors raised by the work-tracking client."""

    @staticmethod
    def work_item_not_found(work_item_id: int) -> Error:
        return Error(
            code="AzureDevOps.WorkItemNotFound",
            message=f"Work item '{work_item_id}' does not exist",
        )

    @staticmethod
    def api_error(detail: str) -> Error:
        return Error(code="AzureDevOps.ApiError", message=f"API call failed: {detail}")

    @staticmethod
    def unauthorized() -> Error:
        return Error(
            code="AzureDevOps.Unauthorized",
            message="Azure DevOps authentication failed, check the personal access token",
        )


class HierarchyErrors:
    """Errors produced while walking a work item's parent chain."""

    @staticmethod
    def no_governing_ancestor(work_item_id: int) -> Error:
        return Error(
            code="Hierarchy.NoGoverningAncestor",
            message=f"No User Story, Feature or Epic above work item {work_item_id}",
        )

    @staticmethod
    def max_depth_exceeded(work_item_id: int, max_depth: int) -> Error:
        return Error(
            code="Hierarchy.MaxDepthExceeded",
            message=(
                f"Parent chain of work item {work_item_id} exceeds {max_depth} levels "
                "(hierarchy too deep or cyclic)"
            ),
        )


class PipelineErrors:
    """Errors reported by the reconciliation pipeline itself."""

    @staticmethod
    def no_ticket_id(pr_url: str) -> Error:
        return Error(
            code="Pipeline.NoTicketId",
            message=f"No work item id found in merge request {pr_url}",
        )

    @staticmethod
    def cache_write_failed(stage: str) -> Error:
        return Error(
            code="Pipeline.CacheWriteFailed",
            message=f"Could not persist stage '{stage}'",
        )

    @staticmethod
    def missing_stage_data(stage: str) -> Error:
        return Error(
            code="Pipeline.MissingStageData",
            message=f"Stage '{stage}' has no cached data to read",
        )

    @staticmethod
    def consolidation_failed(detail: str) -> Error:
        return Error(code="Pipeline.ConsolidationFailed", message=f"Consolidation failed: {detail}")
