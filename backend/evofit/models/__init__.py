from .protocol import Customer, TrainerProtocol, ProtocolVersion, ProtocolAssignment
