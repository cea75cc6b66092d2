"""
V2Ray Config Publisher

Architectural Intent:
- Implements ProxyConfigPort by editing the local V2Ray daemon's JSON config
- Each regional endpoint becomes a vmess outbound tagged out_aws_<region>
- Reloads the daemon after every change; reload failures are logged, not raised

Design Decisions:
- Writes are crash-safe: the current file is renamed to .bak, the new
  config written, and the backup restored if the write fails
- Edits are serialized with an asyncio.Lock; file and subprocess I/O run in
  the default executor
- relay_config reads the vmess inbound client whose email is user_aws_<region>
"""

import asyncio
import json
import logging
import os
import shlex
import subprocess
from functools import partial
from typing import Any, Optional

from anywhere.domain.errors import ProxyConfigError
from anywhere.domain.ports.proxy_config_port import RelayEndpoint

logger = logging.getLogger(__name__)

RELAY_EMAIL_PREFIX = "user_aws_"


class V2RayConfigPublisher:
    def __init__(
        self,
        config_path: str,
        restart_command: str = "sudo systemctl restart v2ray",
    ) -> None:
        self.config_path = config_path
        self.restart_command = restart_command
        self._lock = asyncio.Lock()

    # -- File handling -------------------------------------------------------

    def read_config(self) -> dict[str, Any]:
        try:
            with open(self.config_path) as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise ProxyConfigError(f"proxy config not found: {self.config_path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise ProxyConfigError(f"cannot read {self.config_path}: {e}") from e

    def write_config(self, config: dict[str, Any]) -> None:
        backup = self.config_path + ".bak"
        has_original = os.path.exists(self.config_path)
        try:
            if has_original:
                os.replace(self.config_path, backup)
            with open(self.config_path, "w") as f:
                json.dump(config, f, indent=2)
        except (OSError, TypeError, ValueError) as e:
            if has_original and os.path.exists(backup):
                os.replace(backup, self.config_path)
            raise ProxyConfigError(f"cannot write {self.config_path}: {e}") from e
        if has_original:
            os.remove(backup)

    def restart_service(self) -> bool:
        if not self.restart_command:
            return False
        try:
            subprocess.run(
                shlex.split(self.restart_command),
                capture_output=True,
                text=True,
                check=True,
                timeout=30,
            )
        except FileNotFoundError:
            logger.warning("Restart command not found: %s", self.restart_command)
            return False
        except subprocess.CalledProcessError as e:
            logger.warning("Proxy restart failed (%s): %s", e.returncode, e.stderr.strip())
            return False
        except subprocess.TimeoutExpired:
            logger.warning("Proxy restart timed out: %s", self.restart_command)
            return False
        logger.info("Proxy service restarted")
        return True

    async def _in_executor(self, func, *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    # -- Outbound edits ------------------------------------------------------

    @staticmethod
    def upsert_outbound(
        config: dict[str, Any], tag: str, address: str, port: int, secret: str
    ) -> dict[str, Any]:
        outbound = {
            "protocol": "vmess",
            "tag": tag,
            "settings": {
                "vnext": [
                    {
                        "address": address,
                        "port": port,
                        "users": [{"id": secret, "alterId": 0}],
                    }
                ]
            },
        }
        outbounds = config.setdefault("outbounds", [])
        for i, existing in enumerate(outbounds):
            if existing.get("tag") == tag:
                outbounds[i] = outbound
                break
        else:
            outbounds.append(outbound)
        return config

    @staticmethod
    def outbound_owner(outbound: dict[str, Any]) -> str:
        try:
            return outbound["settings"]["vnext"][0]["users"][0]["id"]
        except (KeyError, IndexError, TypeError):
            return ""

    @classmethod
    def drop_outbound(
        cls, config: dict[str, Any], tag: str, secret: Optional[str] = None
    ) -> bool:
        """Drop the outbound *tag*; with *secret*, only if that user owns it."""
        outbounds = config.get("outbounds", [])
        kept = [
            o
            for o in outbounds
            if o.get("tag") != tag
            or (secret is not None and cls.outbound_owner(o) != secret)
        ]
        if len(kept) == len(outbounds):
            return False
        config["outbounds"] = kept
        return True

    # -- ProxyConfigPort -----------------------------------------------------

    async def publish(self, tag: str, address: str, port: int, secret: str) -> None:
        async with self._lock:
            config = await self._in_executor(self.read_config)
            self.upsert_outbound(config, tag, address, port, secret)
            await self._in_executor(self.write_config, config)
            logger.info("Published outbound %s -> %s:%d", tag, address, port)
            await self._in_executor(self.restart_service)

    async def remove(self, tag: str, secret: Optional[str] = None) -> bool:
        async with self._lock:
            config = await self._in_executor(self.read_config)
            if not self.drop_outbound(config, tag, secret):
                logger.debug("Outbound %s not present for %s", tag, secret or "any owner")
                return False
            await self._in_executor(self.write_config, config)
            logger.info("Removed outbound %s", tag)
            await self._in_executor(self.restart_service)
            return True

    def relay_config(self, region: str) -> Optional[RelayEndpoint]:
        try:
            config = self.read_config()
        except ProxyConfigError as e:
            logger.debug("No relay config: %s", e)
            return None
        email = RELAY_EMAIL_PREFIX + region
        for inbound in config.get("inbounds", []):
            if inbound.get("protocol") != "vmess":
                continue
            for client in inbound.get("settings", {}).get("clients", []):
                if client.get("email") == email:
                    return RelayEndpoint(
                        port=int(inbound.get("port", 0)),
                        user_id=client.get("id", ""),
                    )
        return None
