import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

from companion_voice.config import CompanionVoiceConfig
from companion_voice.log_format import ColoredFormatter
from companion_voice.ports.control import ControlCommand
from companion_voice.ports.synthesizer import VoiceHint

CLIENT_COMMANDS = ("start", "end", "status")


def main() -> None:
    parser = argparse.ArgumentParser(description="Hands-free voice companion")
    parser.add_argument("--profile", help="Path to a JSON file with the caregiver profile")
    parser.add_argument("--voice", choices=[v.value for v in VoiceHint], help="Voice to speak with")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("start", help="Start a conversation session")
    subparsers.add_parser("end", help="End the current conversation session")
    subparsers.add_parser("status", help="Query session status")

    args = parser.parse_args()
    config = CompanionVoiceConfig()
    _setup_logging(config, verbose=args.verbose)

    try:
        profile = _load_profile(args.profile)
    except (OSError, ValueError) as exc:
        print(f"Cannot read profile: {exc}", file=sys.stderr)
        sys.exit(2)

    if args.command in CLIENT_COMMANDS:
        asyncio.run(_run_client_command(args.command, config, profile, args.voice))
    else:
        sys.exit(asyncio.run(_run_daemon(config, profile, args.voice)))


def _setup_logging(config: CompanionVoiceConfig, verbose: bool) -> None:
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    console = logging.StreamHandler()
    if sys.stderr.isatty():
        console.setFormatter(ColoredFormatter(datefmt="%H:%M:%S"))
    else:
        console.setFormatter(logging.Formatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s", datefmt="%H:%M:%S",
        ))
    root.addHandler(console)

    if config.log_file:
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
        ))
        root.addHandler(file_handler)

    for noisy in ("websockets", "httpcore", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING if not verbose else logging.INFO)


def _load_profile(path: str | None) -> dict | None:
    if not path:
        return None
    profile = json.loads(Path(path).read_text())
    if not isinstance(profile, dict):
        raise ValueError("profile must be a JSON object")
    return profile


async def _run_client_command(
    command: str,
    config: CompanionVoiceConfig,
    profile: dict | None,
    voice: str | None,
) -> None:
    from companion_voice.adapters.unix_control import UnixSocketControlClient

    client = UnixSocketControlClient(socket_path=config.socket_path)
    payload = None
    if command == "start":
        payload = {key: value for key, value in (("profile", profile), ("voice", voice)) if value}

    try:
        result = await client.send_command(command, payload)
    except (ConnectionRefusedError, FileNotFoundError):
        print("Companion voice is not running", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result))
    if result.get("status") != "ok":
        sys.exit(1)


def make_control_handler(coordinator, default_profile: dict | None, default_voice: str | None):
    from companion_voice.domain.errors import CaptureUnavailableError

    def status() -> dict:
        return {
            "status": "ok",
            "state": coordinator.state.name,
            "session_active": coordinator.session is not None,
            "speaking": coordinator.is_speaking,
        }

    async def handle(command: ControlCommand) -> dict:
        payload = command.payload or {}
        if command.action == "start":
            voice = payload.get("voice") or default_voice
            try:
                await coordinator.start_session(
                    profile=payload.get("profile", default_profile),
                    voice_hint=VoiceHint(voice) if voice else None,
                )
            except ValueError:
                return {"status": "error", "error": f"unknown voice: {voice}"}
            except CaptureUnavailableError as exc:
                return {"status": "error", "error": str(exc)}
            return status()
        if command.action == "end":
            await coordinator.end_session()
            return status()
        if command.action == "status":
            return status()
        return {"status": "error", "error": f"unknown action: {command.action}"}

    return handle


async def _run_daemon(
    config: CompanionVoiceConfig,
    profile: dict | None,
    voice: str | None,
) -> int:
    from companion_voice.adapters.unix_control import UnixSocketControlServer
    from companion_voice.domain.errors import CompanionVoiceError
    from companion_voice.factory import create_coordinator
    from companion_voice.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    if has_critical_failures(results):
        logging.error("Critical health check failures, aborting startup")
        return 1

    shutdown_event = asyncio.Event()
    exit_code = 0
    shutdown_triggered = False

    def handle_session_error(error: CompanionVoiceError) -> None:
        nonlocal exit_code
        if error.kind.is_fatal:
            logging.error("Fatal session error, shutting down: %s", error)
            exit_code = 1
            shutdown_event.set()

    def handle_signal() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            logging.warning("Forced exit")
            sys.exit(1)
        shutdown_triggered = True
        logging.info("Shutting down...")
        shutdown_event.set()

    coordinator = create_coordinator(config, on_session_error=handle_session_error)
    control = UnixSocketControlServer(
        handler=make_control_handler(coordinator, profile, voice),
        socket_path=config.socket_path,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await control.start()
    try:
        await coordinator.start_session(
            profile=profile,
            voice_hint=VoiceHint(voice) if voice else None,
        )
        await shutdown_event.wait()
    except CompanionVoiceError as exc:
        logging.error("Could not start session: %s", exc)
        exit_code = 1
    finally:
        await control.stop()
        await coordinator.close()

    return exit_code


if __name__ == "__main__":
    main()
