import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ServerConfig:
    host: str = os.getenv("WATCH_HOST", "0.0.0.0")
    port: int = int(os.getenv("WATCH_PORT", "8000"))
    stun_url: str = os.getenv("STUN_SERVER_URL", "stun:stun.l.google.com:19302")
    turn_url: Optional[str] = os.getenv("TURN_SERVER_URL")
    turn_username: Optional[str] = os.getenv("TURN_USERNAME")
    turn_credential: Optional[str] = os.getenv("TURN_CREDENTIAL")

    def ice_servers(self) -> List[Dict[str, Any]]:
        servers: List[Dict[str, Any]] = [{"urls": self.stun_url}]
        if self.turn_url:
            turn: Dict[str, Any] = {"urls": self.turn_url}
            if self.turn_username:
                turn["username"] = self.turn_username
                turn["credential"] = self.turn_credential or ""
            servers.append(turn)
        return servers


settings = ServerConfig()
