class TaskError(Exception):
    """Base error rendered into the response envelope."""

    code = "internal"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFailed(TaskError):
    code = "validation"
    status_code = 422


class TaskNotFound(TaskError):
    code = "not_found"
    status_code = 404

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Unable to find task {task_id}")
        self.task_id = task_id


class StorageError(TaskError):
    code = "internal"
    status_code = 500

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
