"""Domain errors raised by the service modules and mapped to HTTP responses in main.py."""


class NotFoundError(ValueError):
    pass


class ConflictError(ValueError):
    pass


class InvalidTransitionError(ValueError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move booking from '{current}' to '{target}'")


class PaymentError(ValueError):
    pass
