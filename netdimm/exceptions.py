class NetDimmException(Exception):
    pass


class CodecError(NetDimmException):
    pass


class FormatArityError(CodecError):
    pass


class TruncatedDataError(CodecError):
    pass


class NetDimmConnectionError(NetDimmException, ConnectionError):
    pass


class NotConnectedError(NetDimmConnectionError):
    pass


class TruncatedFrameError(NetDimmException):
    pass


class UnexpectedResponseError(NetDimmException):
    pass


class ProtocolError(NetDimmException):
    pass
