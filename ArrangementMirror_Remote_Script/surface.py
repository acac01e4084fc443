# ArrangementMirror/surface.py
from _Framework.ControlSurface import ControlSurface
import socket
import json
import logging
import queue
import threading
import time
import traceback

from .commands import CommandDispatcher
from .config import load_config
from .live_accessor import LiveObjectAccessor
from .session import MirrorSession

HOST = "localhost"
MAIN_THREAD_TIMEOUT = 10.0


class _LogMessageHandler(logging.Handler):
    """Forward engine log records to Live's Log.txt."""

    def __init__(self, surface):
        logging.Handler.__init__(self)
        self._surface = surface
        self.setFormatter(logging.Formatter("%(name)s - %(levelname)s - %(message)s"))

    def emit(self, record):
        try:
            self._surface.log_message(self.format(record))
        except Exception:
            self.handleError(record)


class ArrangementMirror(ControlSurface):
    """ArrangementMirror Remote Script for Ableton Live"""

    def __init__(self, c_instance):
        """Initialize the control surface"""
        ControlSurface.__init__(self, c_instance)
        self.log_message("ArrangementMirror Remote Script initializing...")

        self._log_handler = _LogMessageHandler(self)
        self._logger = logging.getLogger("ArrangementMirror")
        self._logger.addHandler(self._log_handler)
        self._logger.setLevel(logging.INFO)

        # Socket server for the presentation layer
        self.server = None
        self.client_threads = []
        self.server_thread = None
        self.running = False

        self.config = load_config()
        self._song = self.song()
        self.accessor = LiveObjectAccessor(self._get_song)
        self.mirror = MirrorSession(self.accessor, self.config)
        self.mirror.channel.connect(self._on_projection_published)
        self.dispatcher = CommandDispatcher(self.mirror)

        self._following_selection = False
        self.mirror.start()
        if self.config.follows_selection:
            self._song.view.add_selected_track_listener(self._on_selected_track_changed)
            self._following_selection = True

        self.start_server()

        self.log_message("ArrangementMirror initialized")
        self.show_message("ArrangementMirror: Listening for commands on port " + str(self.config.port))

    def disconnect(self):
        """Called when Ableton closes or the control surface is removed"""
        self.log_message("ArrangementMirror disconnecting...")
        self.running = False

        if self._following_selection:
            try:
                self._song.view.remove_selected_track_listener(self._on_selected_track_changed)
            except Exception as e:
                self.log_message("Error removing selected_track listener: " + str(e))
            self._following_selection = False

        # Release subscriptions before the handles go away
        self.mirror.stop()

        if self.server:
            try:
                self.server.close()
            except Exception:
                pass

        if self.server_thread and self.server_thread.is_alive():
            self.server_thread.join(1.0)

        for client_thread in self.client_threads[:]:
            if client_thread.is_alive():
                self.log_message("Client thread still alive during disconnect")

        self._logger.removeHandler(self._log_handler)
        ControlSurface.disconnect(self)
        self.log_message("ArrangementMirror disconnected")

    def _get_song(self):
        """Return the current song object."""
        try:
            song = self.song()
            if song is not None:
                self._song = song
                return song
        except Exception:
            pass
        return self._song

    def _on_selected_track_changed(self):
        """Rebind when the selected track moves, the way a device would move tracks."""
        if self.mirror.binding != self.config.binding:
            return
        self.log_message("Selected track changed, rebinding")
        # Listeners cannot be swapped from inside a notification.
        self.schedule_message(1, self.mirror.rebind)

    def _on_projection_published(self, events):
        self.log_message("Published %d arrangement events" % len(events))

    def start_server(self):
        """Start the socket server in a separate thread"""
        try:
            self.server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            self.server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self.server.bind((HOST, self.config.port))
            self.server.listen(5)

            self.running = True
            self.server_thread = threading.Thread(target=self._server_thread)
            self.server_thread.daemon = True
            self.server_thread.start()

            self.log_message("Server started on port " + str(self.config.port))
        except Exception as e:
            self.log_message("Error starting server: " + str(e))
            self.show_message("ArrangementMirror: Error starting server - " + str(e))

    def _server_thread(self):
        """Server thread implementation - handles client connections"""
        try:
            self.log_message("Server thread started")
            # Timeout lets the loop notice the running flag
            self.server.settimeout(1.0)

            while self.running:
                try:
                    client, address = self.server.accept()
                    self.log_message("Connection accepted from " + str(address))

                    client_thread = threading.Thread(
                        target=self._handle_client,
                        args=(client,)
                    )
                    client_thread.daemon = True
                    client_thread.start()

                    self.client_threads.append(client_thread)
                    self.client_threads = [t for t in self.client_threads if t.is_alive()]

                except socket.timeout:
                    continue
                except Exception as e:
                    if self.running:
                        self.log_message("Server accept error: " + str(e))
                    time.sleep(0.5)

            self.log_message("Server thread stopped")
        except Exception as e:
            self.log_message("Server thread error: " + str(e))

    def _handle_client(self, client):
        """Handle communication with a connected client"""
        self.log_message("Client handler started")
        client.settimeout(None)
        buffer = b''

        try:
            while self.running:
                try:
                    data = client.recv(8192)

                    if not data:
                        self.log_message("Client disconnected")
                        break

                    buffer += data

                    try:
                        command = json.loads(buffer.decode('utf-8'))
                        buffer = b''
                    except ValueError:
                        # Incomplete data, wait for more
                        continue

                    self.log_message("Received command: " + str(command.get("type", "unknown")))
                    response = self._process_command(command)
                    client.sendall(json.dumps(response).encode('utf-8'))

                except Exception as e:
                    self.log_message("Error handling client data: " + str(e))
                    self.log_message(traceback.format_exc())

                    error_response = {
                        "status": "error",
                        "message": str(e)
                    }
                    try:
                        client.sendall(json.dumps(error_response).encode('utf-8'))
                    except Exception:
                        # Connection is probably dead
                        break
                    break
        except Exception as e:
            self.log_message("Error in client handler: " + str(e))
        finally:
            try:
                client.close()
            except Exception:
                pass
            self.log_message("Client handler stopped")

    def _process_command(self, command):
        """Run a command, on Live's main thread when it touches the set"""
        command_type = command.get("type", "")
        if not self.dispatcher.needs_main_thread(command_type):
            return self.dispatcher.process(command)

        response_queue = queue.Queue()

        def main_thread_task():
            response_queue.put(self.dispatcher.process(command))

        try:
            self.schedule_message(0, main_thread_task)
        except AssertionError:
            # Already on the main thread
            main_thread_task()

        try:
            return response_queue.get(timeout=MAIN_THREAD_TIMEOUT)
        except queue.Empty:
            return {
                "status": "error",
                "message": "Timeout waiting for operation to complete"
            }
