from voicegate.gateway.connection import ConnectionState, VoiceGatewayConnection
from voicegate.gateway.listener import GatewayListener, detect_source

__all__ = ["ConnectionState", "GatewayListener", "VoiceGatewayConnection", "detect_source"]
