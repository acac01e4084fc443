# arrangement_mirror_mcp_server.py
from mcp.server.fastmcp import FastMCP, Context
import socket
import json
import logging
import time
from dataclasses import dataclass
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Any, List, Optional, Union

from ArrangementMirror_Remote_Script.config import load_config

# Configure logging
logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger("ArrangementMirrorMCPServer")

_STATE_MODIFYING_COMMANDS = [
    "rebuild_arrangement",
    "rebind_track",
    "replace_clip_notes",
]


@dataclass
class AbletonConnection:
    host: str
    port: int
    sock: socket.socket = None

    def connect(self) -> bool:
        """Connect to the ArrangementMirror Remote Script socket server"""
        if self.sock:
            return True

        try:
            self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            self.sock.connect((self.host, self.port))
            logger.info(f"Connected to Ableton at {self.host}:{self.port}")
            return True
        except Exception as e:
            logger.error(f"Failed to connect to Ableton: {str(e)}")
            self.sock = None
            return False

    def disconnect(self):
        """Disconnect from the Remote Script"""
        if self.sock:
            try:
                self.sock.close()
            except Exception as e:
                logger.error(f"Error disconnecting from Ableton: {str(e)}")
            finally:
                self.sock = None

    def receive_full_response(self, sock, buffer_size=8192):
        """Receive the complete response, potentially in multiple chunks"""
        chunks = []
        sock.settimeout(15.0)

        try:
            while True:
                try:
                    chunk = sock.recv(buffer_size)
                    if not chunk:
                        if not chunks:
                            raise Exception("Connection closed before receiving any data")
                        break

                    chunks.append(chunk)

                    try:
                        data = b''.join(chunks)
                        json.loads(data.decode('utf-8'))
                        logger.info(f"Received complete response ({len(data)} bytes)")
                        return data
                    except ValueError:
                        # Incomplete JSON or a split UTF-8 sequence, keep receiving
                        continue
                except socket.timeout:
                    logger.warning("Socket timeout during chunked receive")
                    break
                except (ConnectionError, BrokenPipeError, ConnectionResetError) as e:
                    logger.error(f"Socket connection error during receive: {str(e)}")
                    raise
        except Exception as e:
            logger.error(f"Error during receive: {str(e)}")
            raise

        # Every chunk was already checked above
        if chunks:
            raise Exception("Incomplete JSON response received")
        raise Exception("No data received")

    def send_command(self, command_type: str, params: Dict[str, Any] = None) -> Dict[str, Any]:
        """Send a command to the Remote Script and return the result"""
        if not self.sock and not self.connect():
            raise ConnectionError("Not connected to Ableton")

        command = {
            "type": command_type,
            "params": params or {}
        }
        is_modifying_command = command_type in _STATE_MODIFYING_COMMANDS

        try:
            logger.info(f"Sending command: {command_type} with params: {params}")
            self.sock.sendall(json.dumps(command).encode('utf-8'))

            # Main-thread commands wait on Live's scheduler
            self.sock.settimeout(15.0 if is_modifying_command else 10.0)

            response_data = self.receive_full_response(self.sock)
            response = json.loads(response_data.decode('utf-8'))
            logger.info(f"Response parsed, status: {response.get('status', 'unknown')}")

            if response.get("status") == "error":
                logger.error(f"Ableton error: {response.get('message')}")
                raise Exception(response.get("message", "Unknown error from Ableton"))

            return response.get("result", {})
        except socket.timeout:
            logger.error("Socket timeout while waiting for response from Ableton")
            self.sock = None
            raise Exception("Timeout waiting for Ableton response")
        except (ConnectionError, BrokenPipeError, ConnectionResetError) as e:
            logger.error(f"Socket connection error: {str(e)}")
            self.sock = None
            raise Exception(f"Connection to Ableton lost: {str(e)}")
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON response from Ableton: {str(e)}")
            self.sock = None
            raise Exception(f"Invalid response from Ableton: {str(e)}")
        except Exception as e:
            logger.error(f"Error communicating with Ableton: {str(e)}")
            self.sock = None
            raise Exception(f"Communication error with Ableton: {str(e)}")


@asynccontextmanager
async def server_lifespan(server: FastMCP) -> AsyncIterator[Dict[str, Any]]:
    """Manage server startup and shutdown lifecycle"""
    try:
        logger.info("ArrangementMirror MCP server starting up")
        try:
            get_ableton_connection()
            logger.info("Successfully connected to Ableton on startup")
        except Exception as e:
            logger.warning(f"Could not connect to Ableton on startup: {str(e)}")
            logger.warning("Make sure the ArrangementMirror Remote Script is running")

        yield {}
    finally:
        global _ableton_connection
        if _ableton_connection:
            logger.info("Disconnecting from Ableton on shutdown")
            _ableton_connection.disconnect()
            _ableton_connection = None
        logger.info("ArrangementMirror MCP server shut down")


mcp = FastMCP(
    "ArrangementMirror",
    lifespan=server_lifespan
)

_ableton_connection = None


def get_ableton_connection():
    """Get or create a persistent connection to the Remote Script"""
    global _ableton_connection

    if _ableton_connection is not None:
        try:
            # An empty send fails on a dead socket without reaching Live
            _ableton_connection.sock.settimeout(1.0)
            _ableton_connection.sock.sendall(b'')
            return _ableton_connection
        except Exception as e:
            logger.warning(f"Existing connection is no longer valid: {str(e)}")
            try:
                _ableton_connection.disconnect()
            except Exception:
                pass
            _ableton_connection = None

    port = load_config().port
    max_attempts = 3
    for attempt in range(1, max_attempts + 1):
        try:
            logger.info(f"Connecting to Ableton (attempt {attempt}/{max_attempts})...")
            _ableton_connection = AbletonConnection(host="localhost", port=port)
            if _ableton_connection.connect():
                try:
                    _ableton_connection.send_command("get_binding")
                    logger.info("Connection validated successfully")
                    return _ableton_connection
                except Exception as e:
                    logger.error(f"Connection validation failed: {str(e)}")
                    _ableton_connection.disconnect()
                    _ableton_connection = None
            else:
                _ableton_connection = None
        except Exception as e:
            logger.error(f"Connection attempt {attempt} failed: {str(e)}")
            if _ableton_connection:
                _ableton_connection.disconnect()
                _ableton_connection = None

        if attempt < max_attempts:
            time.sleep(1.0)

    logger.error("Failed to connect to Ableton after multiple attempts")
    raise Exception("Could not connect to Ableton. Make sure the ArrangementMirror Remote Script is running.")


def _error_payload(error: str, exc: Exception, **extra) -> Dict[str, Any]:
    payload = {
        "ok": False,
        "error": error,
        "message": str(exc),
        "exception_type": type(exc).__name__
    }
    payload.update(extra)
    return payload


def _ok_payload(result: Any, command: str) -> Dict[str, Any]:
    if isinstance(result, dict):
        payload = dict(result)
        payload["ok"] = True
        return payload
    return {
        "ok": False,
        "error": "invalid_response",
        "debug": {
            "backend_command": command,
            "backend_result_type": str(type(result))
        }
    }


def _validate_note_rows(notes: Any) -> Optional[str]:
    if not isinstance(notes, list):
        return "notes must be a list"
    for index, note in enumerate(notes):
        if not isinstance(note, dict):
            return f"note {index} is not an object"
        for key in ("pitch", "start_time", "duration"):
            value = note.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return f"note {index} is missing a numeric {key}"
    return None


@mcp.tool()
def get_binding(ctx: Context) -> Dict[str, Any]:
    """
    Report which track the Remote Script is mirroring and whether it is subscribed.
    """
    try:
        ableton = get_ableton_connection()
        return _ok_payload(ableton.send_command("get_binding"), "get_binding")
    except Exception as e:
        logger.error(f"Error getting binding: {str(e)}")
        return _error_payload("get_binding_failed", e)


@mcp.tool()
def get_arrangement_projection(ctx: Context, include_notes: bool = True) -> Dict[str, Any]:
    """
    Return the mirrored arrangement clips of the bound track.

    Parameters:
    - include_notes: Include each clip's unmuted notes with their absolute start (start_abs)
    """
    try:
        ableton = get_ableton_connection()
        result = ableton.send_command("get_arrangement_projection", {"include_notes": include_notes})
        payload = _ok_payload(result, "get_arrangement_projection")
        if payload.get("ok"):
            payload["clip_count"] = len(payload.get("clips", []))
        return payload
    except Exception as e:
        logger.error(f"Error getting arrangement projection: {str(e)}")
        return _error_payload("arrangement_projection_failed", e)


@mcp.tool()
def get_clip_notes(ctx: Context, clip_id: int) -> Dict[str, Any]:
    """
    Return the notes stored for one clip by the last rebuild.

    Parameters:
    - clip_id: The clip id reported by get_arrangement_projection
    """
    try:
        ableton = get_ableton_connection()
        return _ok_payload(ableton.send_command("get_clip_notes", {"clip_id": clip_id}), "get_clip_notes")
    except Exception as e:
        logger.error(f"Error getting clip notes: {str(e)}")
        return _error_payload("get_clip_notes_failed", e, clip_id=clip_id)


@mcp.tool()
def rebuild_arrangement(ctx: Context) -> Dict[str, Any]:
    """
    Force a full rebuild of the mirrored arrangement.
    """
    try:
        ableton = get_ableton_connection()
        return _ok_payload(ableton.send_command("rebuild_arrangement"), "rebuild_arrangement")
    except Exception as e:
        logger.error(f"Error rebuilding arrangement: {str(e)}")
        return _error_payload("rebuild_failed", e)


@mcp.tool()
def rebind_track(ctx: Context, target: Union[str, int, None] = None) -> Dict[str, Any]:
    """
    Bind the mirror to another track.

    Parameters:
    - target: A path such as "live_set tracks 2", a numeric id, or empty to re-resolve the configured binding
    """
    try:
        ableton = get_ableton_connection()
        return _ok_payload(ableton.send_command("rebind_track", {"target": target}), "rebind_track")
    except Exception as e:
        logger.error(f"Error rebinding track: {str(e)}")
        return _error_payload("rebind_failed", e, target=target)


@mcp.tool()
def replace_clip_notes(
    ctx: Context,
    clip_id: int,
    notes: List[Dict[str, Union[int, float, bool]]],
    replace: bool = True
) -> Dict[str, Any]:
    """
    Write notes into an arrangement clip of the bound track.

    Parameters:
    - clip_id: The clip id reported by get_arrangement_projection
    - notes: List of note dictionaries, each with pitch, start_time, duration, velocity, and mute
    - replace: Replace every existing note (default) or add alongside them
    """
    validation_error = _validate_note_rows(notes)
    if validation_error:
        return {
            "ok": False,
            "error": "invalid_notes",
            "message": validation_error,
            "clip_id": clip_id
        }
    try:
        ableton = get_ableton_connection()
        result = ableton.send_command("replace_clip_notes", {
            "clip_id": clip_id,
            "notes": notes,
            "replace": replace
        })
        return _ok_payload(result, "replace_clip_notes")
    except Exception as e:
        logger.error(f"Error replacing clip notes: {str(e)}")
        return _error_payload("replace_clip_notes_failed", e, clip_id=clip_id)


# Main execution
def main():
    """Run the MCP server"""
    mcp.run()


if __name__ == "__main__":
    main()
