"""
Command-Line Interface for voice-pipeline.

Drives the same TTSOrchestrator the HTTP API uses, without running the
server. Useful for operators (granting credits, inspecting breakers) and
for trying a voice from a terminal.

Usage Examples:
    # Show how a script is rewritten for each vendor (no network)
    voice-pipeline prepare --text "Breathe in [pause] and out"

    # Speak text in a stored voice
    voice-pipeline synthesize --user u1 --voice voice-3f2a9c1b7d4e \\
        --text "Close your eyes" --out calm.mp3

    # Clone a voice from a recorded sample
    voice-pipeline clone --user u1 --sample sample.wav --name "Evening voice"

    # Credits
    voice-pipeline balance --user u1 --json
    voice-pipeline grant --user u1 --amount 5000

    # Breaker and cache state
    voice-pipeline circuits
    voice-pipeline health

    # Run the HTTP server
    voice-pipeline serve --port 8000

Environment Variables:
    VOICE_PIPELINE_SETTINGS: Settings file (default config/settings.yaml)
    FISH_AUDIO_API_KEY: Primary vendor key
    REPLICATE_API_TOKEN: Fallback vendor token
    VOICE_PIPELINE_DB_PATH: SQLite database path
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from voice_pipeline.core.config import ConfigValidationError, Settings, load_settings
from voice_pipeline.core.errors import PipelineError
from voice_pipeline.core.logging import configure_logging, get_logger, info, set_request_id, warn
from voice_pipeline.core.models import ProviderKind
from voice_pipeline.utils.text import prepare_text


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        argv: Optional list of arguments (defaults to sys.argv).

    Returns:
        Parsed argument namespace; ``command`` names the subcommand.
    """
    parser = argparse.ArgumentParser(description="voice-pipeline CLI (meditation voice generation)")
    parser.add_argument("--settings", help="Settings YAML (default $VOICE_PIPELINE_SETTINGS or config/settings.yaml)")
    parser.add_argument("--json", action="store_true", help="Print JSON output")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("prepare", help="Show vendor-specific text preparation (no synthesis)")
    p.add_argument("--text", required=True)

    p = sub.add_parser("synthesize", help="Speak text in a stored voice")
    p.add_argument("--user", required=True, help="User id")
    p.add_argument("--voice", required=True, help="Voice profile id")
    p.add_argument("--text", help="Text to speak")
    p.add_argument("--file", help="Read the text from a file")
    p.add_argument("--out", help="Output path (default out.<format>)")
    p.add_argument("--timeout-ms", type=int, help="Deadline for the whole request")

    p = sub.add_parser("clone", help="Create a voice from a recorded sample")
    p.add_argument("--user", required=True)
    p.add_argument("--sample", required=True, help="Audio file (wav, mp3, ...)")
    p.add_argument("--name", required=True, help="Display name")
    p.add_argument("--description", default="")
    p.add_argument("--voice", help="Existing voice id to re-clone into")
    p.add_argument("--timeout-ms", type=int)

    p = sub.add_parser("delete", help="Delete a voice and its vendor model")
    p.add_argument("--user", required=True)
    p.add_argument("--voice", required=True)

    p = sub.add_parser("balance", help="Show balance and period usage")
    p.add_argument("--user", required=True)

    p = sub.add_parser("grant", help="Add credits to an account")
    p.add_argument("--user", required=True)
    p.add_argument("--amount", type=int, required=True)

    sub.add_parser("circuits", help="Show circuit breaker state per provider")
    sub.add_parser("health", help="Show breaker, cache and ledger state")

    p = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8000)

    return parser.parse_args(argv)


def _load_settings(path: Optional[str]) -> Settings:
    """Explicit paths must exist; the default path falls back to built-in defaults."""
    if path:
        return load_settings(path)
    try:
        return load_settings()
    except FileNotFoundError:
        return Settings(raw={})


def _read_text(args: argparse.Namespace) -> str:
    if args.file:
        if args.text:
            raise SystemExit("Use --file without --text.")
        return Path(args.file).read_text(encoding="utf-8")
    if not args.text:
        raise SystemExit("Provide --text or --file.")
    return args.text


def _emit(payload: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, ensure_ascii=False))
    else:
        for key, value in payload.items():
            print(f"{key}: {value}")


def _prepare(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "ok": True,
        "prepared": {kind.value: prepare_text(args.text, kind) for kind in ProviderKind},
    }


def _deadline(timeout_ms: Optional[int]):
    from voice_pipeline.utils.timing import Deadline
    return Deadline.after_ms(timeout_ms) if timeout_ms else None


def _run_pipeline(args: argparse.Namespace, settings: Settings, rid: str) -> Dict[str, Any]:
    from voice_pipeline.services.orchestrator import CloneRequest, SynthesisRequest, TTSOrchestrator

    orchestrator = TTSOrchestrator(settings.get_pipeline_config())
    log = get_logger("voice-pipeline.cli")
    try:
        if args.command == "synthesize":
            text = _read_text(args)
            info(log, "synth_start", chars=len(text), voice_id=args.voice)
            result = orchestrator.synthesize(
                SynthesisRequest(user_id=args.user, text=text, voice_id=args.voice),
                deadline=_deadline(args.timeout_ms),
                request_id=rid,
            )
            payload = result.to_dict()
            payload.pop("audioBase64", None)
            if result.audio:
                out_path = Path(args.out or f"out.{result.format or 'mp3'}")
                out_path.parent.mkdir(parents=True, exist_ok=True)
                out_path.write_bytes(result.audio)
                payload["out"] = str(out_path)
                payload["bytes"] = len(result.audio)
            return payload

        if args.command == "clone":
            sample = Path(args.sample).read_bytes()
            result = orchestrator.clone(
                CloneRequest(
                    user_id=args.user,
                    sample=sample,
                    display_name=args.name,
                    description=args.description,
                    voice_id=args.voice,
                ),
                deadline=_deadline(args.timeout_ms),
                request_id=rid,
            )
            return result.to_dict()

        if args.command == "delete":
            return orchestrator.delete_voice(args.user, args.voice)

        if args.command == "balance":
            return {"success": True, **orchestrator.get_credits(args.user).to_dict()}

        if args.command == "grant":
            balance = orchestrator.grant_credits(args.user, args.amount)
            return {"success": True, "userId": args.user, "balance": balance}

        if args.command == "circuits":
            return {"ok": True, "circuits": orchestrator.circuits.snapshot()}

        return orchestrator.health()
    finally:
        orchestrator.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code: 0 on success, 1 on a pipeline error, 2 on a missing or
        invalid settings file.
    """
    args = _parse_args(argv)

    configure_logging()
    log = get_logger("voice-pipeline.cli")
    rid = str(uuid4())[:12]
    set_request_id(rid)

    if args.command == "prepare":
        _emit(_prepare(args), args.json)
        return 0

    if args.command == "serve":
        import uvicorn
        uvicorn.run("voice_pipeline.main:app", host=args.host, port=args.port)
        return 0

    try:
        settings = _load_settings(args.settings)
    except FileNotFoundError as e:
        print(f"[FAILED] {e}")
        return 2

    try:
        payload = _run_pipeline(args, settings, rid)
    except ConfigValidationError as e:
        warn(log, "config_invalid", error=str(e))
        print(f"[FAILED] invalid configuration: {e}")
        return 2
    except PipelineError as e:
        _emit({"success": False, "error": e.to_dict(), "requestId": rid}, args.json)
        return 1

    _emit(payload, args.json)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
