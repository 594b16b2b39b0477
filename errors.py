class LedgerError(ValueError):
    pass


class NotFound(LedgerError):
    pass


class InvalidInput(LedgerError):
    pass


class Conflict(LedgerError):
    pass


class ForecastAlreadyRealized(Conflict):
    pass
