"""Hard errors raised on correctness-critical paths (membership, persistence, input)."""


class SmartThreadsError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class AccessDenied(SmartThreadsError):
    status_code = 403

    def __init__(self, detail: str = "Access denied"):
        super().__init__(detail)


class NotFound(SmartThreadsError):
    status_code = 404


class InvalidInput(SmartThreadsError):
    status_code = 400
