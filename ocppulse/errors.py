class SimulatorError(Exception):
    """Base class for errors raised by the charge point engine."""


class InvalidCommand(SimulatorError):
    """A user command was requested while its guard is not met."""


class TransportFailure(SimulatorError):
    def __init__(self, detail: str):
        super().__init__(f"transport failure: {detail}")
        self.detail = detail


class CallTimeout(SimulatorError):
    def __init__(self, action: str, unique_id: str):
        super().__init__(f"{action} ({unique_id}) got no response in time")
        self.action = action
        self.unique_id = unique_id
