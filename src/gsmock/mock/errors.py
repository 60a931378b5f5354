from botocore.exceptions import ClientError


class MockBackendError(Exception):
    """Base class for caller errors raised by the mock backend."""


class UnknownScenario(MockBackendError, ValueError):
    def __init__(self, name: str, available: list[str]):
        self.name = name
        super().__init__(
            f"Scenario not found: {name}. Available scenarios: {', '.join(available)}"
        )


class InvalidOperation(MockBackendError, ValueError):
    pass


class NotFound(MockBackendError, LookupError):
    pass


class InvalidState(MockBackendError):
    pass


class InjectedFailure(ClientError):
    """A failure configured through fault injection.

    Subclasses botocore's ClientError so callers written against the real
    boto3 clients see the same exception shape (``e.response["Error"]``).
    """

    def __init__(self, operation: str, code: str, message: str):
        self.operation = operation
        self.code = code
        self.message = message
        super().__init__({"Error": {"Code": code, "Message": message}}, operation)
