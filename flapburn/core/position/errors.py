class ContractGroupError(RuntimeError):
    """A whole contract group could not be read; its state resets to defaults."""

    def __init__(self, group: str, message: str):
        self.group = group
        super().__init__(f"{group}: {message}")


class ContractNotDeployedError(ContractGroupError):
    def __init__(self, group: str, address: str | None):
        self.address = address
        super().__init__(group, f"no contract deployed at {address}")


class InvalidPoolError(ContractGroupError):
    pass


class RefreshFailedError(RuntimeError):
    """No group could be read; the previous view must be kept."""
