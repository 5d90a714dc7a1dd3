class SqlNotebookError(Exception):
    pass


class NotebookNotFoundError(SqlNotebookError):
    pass


class NotebookParseError(SqlNotebookError):
    pass


class CellNotFoundError(SqlNotebookError):
    pass


class InvalidCellNameError(SqlNotebookError):
    pass


class SessionClosedError(SqlNotebookError):
    pass
