"""
cuepoint.validation - Dependency checks and validation utilities.

Validates environment, dependencies, and input files before processing.
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Any

from cuepoint.exceptions import DependencyError, ExtractionUnavailable, ValidationError

FFMPEG_INSTALL_HINT = "Install with: brew install ffmpeg (macOS) or apt install ffmpeg (Linux)"


def require_toolchain() -> dict[str, str]:
    """Ensure ffmpeg and ffprobe are on PATH without invoking them.

    Returns:
        Dict with resolved 'ffmpeg' and 'ffprobe' paths

    Raises:
        ExtractionUnavailable: If either tool is missing
    """
    paths = {}
    for tool in ("ffmpeg", "ffprobe"):
        resolved = shutil.which(tool)
        if not resolved:
            raise ExtractionUnavailable(tool, f"{tool} not found in PATH", FFMPEG_INSTALL_HINT)
        paths[tool] = resolved
    return paths


def _tool_version(path: str) -> str:
    try:
        proc = subprocess.run(
            [path, "-version"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        version_line = proc.stdout.split("\n")[0]
        return version_line.split()[2] if version_line else "unknown"
    except (subprocess.TimeoutExpired, OSError, IndexError):
        return "unknown"


def check_ffmpeg() -> dict[str, str]:
    """Check if FFmpeg and FFprobe are installed and get versions.

    Returns:
        Dict with 'ffmpeg_version' and 'ffprobe_version'

    Raises:
        ExtractionUnavailable: If FFmpeg or FFprobe not found
    """
    paths = require_toolchain()
    return {
        "ffmpeg_version": _tool_version(paths["ffmpeg"]),
        "ffprobe_version": _tool_version(paths["ffprobe"]),
    }


def check_disk_space(path: Path, required_mb: int) -> dict[str, Any]:
    """Check if there's enough disk space at the given path.

    Args:
        path: Path to check (will use parent directory if file)
        required_mb: Required space in megabytes

    Returns:
        Dict with 'available_mb', 'required_mb', 'sufficient'

    Raises:
        ValidationError: If no existing ancestor can be checked
    """
    check_path = path.parent if path.is_file() else path
    while not check_path.exists() and check_path != check_path.parent:
        check_path = check_path.parent

    try:
        stat = shutil.disk_usage(check_path)
    except OSError as e:
        raise ValidationError(f"Cannot check disk space: {e}") from e

    available_mb = stat.free // (1024 * 1024)
    return {
        "available_mb": available_mb,
        "required_mb": required_mb,
        "sufficient": available_mb >= required_mb,
    }


def estimate_audio_size(duration_seconds: float, sample_rate: int = 16000, channels: int = 1) -> int:
    """Estimate 16-bit PCM WAV size in MB for a given duration.

    Args:
        duration_seconds: Audio duration in seconds
        sample_rate: Sample rate (default 16000 for 16kHz)
        channels: Channel count (default mono)

    Returns:
        Estimated size in megabytes
    """
    bytes_per_sample = 2
    bytes_per_second = sample_rate * channels * bytes_per_sample
    total_bytes = int(duration_seconds * bytes_per_second)
    return total_bytes // (1024 * 1024)


def validate_video_file(path: Path) -> dict[str, Any]:
    """Validate a video file exists and is a regular file.

    Raises:
        ValidationError: If file doesn't exist or is not a file
    """
    if not path.exists():
        raise ValidationError(f"File not found: {path}")

    if not path.is_file():
        raise ValidationError(f"Not a file: {path}")

    return {
        "path": str(path),
        "exists": True,
        "size_mb": path.stat().st_size // (1024 * 1024),
    }


def check_embedding_credentials(model: str) -> dict[str, Any]:
    """Check that API credentials for an embedding model are in the environment.

    Returns:
        Dict with 'valid' and 'missing_keys'
    """
    import litellm

    try:
        status = litellm.validate_environment(model=model)
    except Exception as e:
        return {"valid": False, "missing_keys": [], "error": str(e)}

    return {
        "valid": bool(status.get("keys_in_environment")),
        "missing_keys": list(status.get("missing_keys") or []),
    }


def run_preflight_checks(
    work_dir: Path,
    config: Any,
    video_files: list[Path] | None = None,
) -> dict[str, Any]:
    """Run all preflight checks before starting the pipeline.

    Args:
        work_dir: Directory where audio and output files will be written
        config: CuepointConfig
        video_files: Optional list of video files to validate

    Returns:
        Dict with 'passed' and per-check results
    """
    results: dict[str, Any] = {
        "passed": True,
        "checks": {},
    }

    try:
        results["checks"]["ffmpeg"] = check_ffmpeg()
    except DependencyError as e:
        results["checks"]["ffmpeg"] = {"error": str(e), "install_hint": e.install_hint}
        results["passed"] = False

    try:
        disk = check_disk_space(work_dir, 1000)
        results["checks"]["disk_space"] = disk
        if not disk["sufficient"]:
            results["passed"] = False
    except ValidationError as e:
        results["checks"]["disk_space"] = {"error": str(e)}
        results["passed"] = False

    credentials = check_embedding_credentials(config.embedding.model)
    results["checks"]["embedding"] = credentials
    if not credentials["valid"]:
        results["passed"] = False

    if video_files:
        results["checks"]["video_files"] = []
        for vf in video_files:
            try:
                file_result = {"valid": True, **validate_video_file(vf)}
                results["checks"]["video_files"].append(file_result)
            except ValidationError as e:
                results["checks"]["video_files"].append(
                    {"path": str(vf), "valid": False, "error": str(e)}
                )
                results["passed"] = False

    return results
