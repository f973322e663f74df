class ArenaSyncError(Exception):
    pass


class ConnectError(ArenaSyncError):
    pass


class SendError(ArenaSyncError):
    pass


class NotConnectedError(SendError):
    def __init__(self, state=None):
        self.state = state
        super().__init__(f"connection is not open (state={state})")


class DecodeError(ArenaSyncError):
    pass


class UnknownKindError(DecodeError):
    def __init__(self, package_type):
        self.package_type = package_type
        super().__init__(f"unknown packageType {package_type!r}")


class MalformedMessageError(DecodeError):
    pass


class RegistryError(ArenaSyncError):
    def __init__(self, peer_id, message):
        self.peer_id = peer_id
        super().__init__(message)


class PeerAlreadyExistsError(RegistryError):
    def __init__(self, peer_id):
        super().__init__(peer_id, f"peer {peer_id} already exists")


class UnknownPeerError(RegistryError):
    def __init__(self, peer_id):
        super().__init__(peer_id, f"peer {peer_id} is not known")
