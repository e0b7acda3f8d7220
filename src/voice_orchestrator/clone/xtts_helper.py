#!/usr/bin/env python3
"""XTTS-v2 inference helper.

Copied into the XTTS directory and run with the XTTS virtualenv's
interpreter, so it imports nothing from ``voice_orchestrator``.

Usage:
    xtts_helper.py check     print installation status as one JSON line
    xtts_helper.py server    line-delimited JSON command loop on stdin/stdout

Server protocol: one ``{"status": "ready"}`` line at startup, then one
JSON response line per command line. Actions: speak, check, ping, quit.
"""

import json
import os
import sys

MODEL_NAME = "tts_models/multilingual/multi-dataset/xtts_v2"

# Loaded once per server process.
_tts = None
_device = None


def check_installation():
    try:
        import torch
        from TTS.api import TTS  # noqa: F401

        return {"installed": True, "torch_version": torch.__version__}
    except ImportError as e:
        return {"installed": False, "error": str(e)}


def get_tts():
    """Load the model, preferring CUDA unless XTTS_FORCE_CPU is set."""
    global _tts, _device
    if _tts is None:
        import torch
        from TTS.api import TTS

        force_cpu = os.environ.get("XTTS_FORCE_CPU", "").lower() in ("1", "true", "yes")

        if not force_cpu and torch.cuda.is_available():
            try:
                _device = "cuda"
                _tts = TTS(MODEL_NAME).to(_device)
            except (torch.cuda.OutOfMemoryError, RuntimeError):
                _tts = None
                torch.cuda.empty_cache()
                _device = "cpu"
                _tts = TTS(MODEL_NAME).to(_device)
        else:
            _device = "cpu"
            _tts = TTS(MODEL_NAME).to(_device)
    return _tts, _device


def speak(text, reference_audio, language, output_path, temperature=0.65, speed=1.0,
          top_k=50, top_p=0.85, repetition_penalty=2.0):
    try:
        tts, device = get_tts()
        kwargs = {
            "text": text,
            "speaker_wav": reference_audio,
            "language": language,
            "file_path": output_path,
        }
        try:
            tts.tts_to_file(
                **kwargs,
                temperature=float(temperature),
                speed=float(speed),
                top_k=int(top_k),
                top_p=float(top_p),
                repetition_penalty=float(repetition_penalty),
            )
        except (TypeError, ValueError) as param_error:
            # Older TTS releases reject some sampling parameters.
            sys.stderr.write(f"Parameter error, trying basic call: {param_error}\n")
            sys.stderr.flush()
            tts.tts_to_file(**kwargs)
        return {"success": True, "path": output_path, "device": device}
    except Exception as e:
        return {"success": False, "error": str(e)}


def handle_command(cmd):
    """Dispatch one decoded command. Returns (response, keep_running)."""
    action = cmd.get("action")

    if action == "speak":
        return speak(
            cmd.get("text", ""),
            cmd.get("reference_audio", ""),
            cmd.get("language", "en"),
            cmd.get("output_path", ""),
            temperature=cmd.get("temperature", 0.65),
            speed=cmd.get("speed", 1.0),
            top_k=cmd.get("top_k", 50),
            top_p=cmd.get("top_p", 0.85),
            repetition_penalty=cmd.get("repetition_penalty", 2.0),
        ), True
    if action == "check":
        return check_installation(), True
    if action == "ping":
        return {"status": "alive"}, True
    if action == "quit":
        return {"status": "goodbye"}, False
    return {"error": f"Unknown action: {action}"}, True


def _write(obj, stream):
    stream.write(json.dumps(obj) + "\n")
    stream.flush()


def run_server(stdin=None, stdout=None):
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    _write({"status": "ready"}, stdout)

    for line in stdin:
        if not line.strip():
            continue
        try:
            cmd = json.loads(line)
            if not isinstance(cmd, dict):
                raise ValueError("command must be a JSON object")
            result, keep_running = handle_command(cmd)
        except json.JSONDecodeError as e:
            result, keep_running = {"error": f"Invalid JSON: {e}"}, True
        except Exception as e:
            result, keep_running = {"error": str(e)}, True

        _write(result, stdout)
        if not keep_running:
            break


def main():
    if len(sys.argv) < 2:
        print(json.dumps({"error": "No command specified"}))
        sys.exit(1)

    cmd = sys.argv[1]
    if cmd == "check":
        print(json.dumps(check_installation()))
    elif cmd == "server":
        run_server()
    else:
        print(json.dumps({"error": f"Unknown command: {cmd}"}))
        sys.exit(1)


if __name__ == "__main__":
    main()
