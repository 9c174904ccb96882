"""Sandbox — runs one guest script in a freshly provisioned, isolated environment.

Two runtimes:

``docker`` / ``podman`` (production)
    A throw-away container per call: ``--network=none``, read-only root
    filesystem, host-enforced memory/CPU/pid ceilings, unprivileged user,
    all capabilities dropped, the dataset bind-mounted read-only and a small
    ``/tmp`` tmpfs as the only writable location. On timeout the container is
    killed by name, never left to finish.

``local`` (development / tests)
    A subprocess of the host interpreter with rlimits and a scrubbed
    environment. No network isolation and no identity change — do not use it
    for untrusted input in production.

Both return the raw exit status and captured output; interpretation of that
output happens in executor.py.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sys
import tempfile
import uuid
from dataclasses import dataclass
from typing import List, Optional

from tabletalk.services.code_execution.harness import DATASET_ENV_VAR

logger = logging.getLogger(__name__)

# ── Configuration ─────────────────────────────────────────────

CONTAINER_RUNTIMES = ("docker", "podman")
GUEST_SCRIPT_DIR = "/sandbox"
GUEST_DATA_DIR = "/data"
SCRIPT_NAME = "_run.py"

# Host-side environment keys never passed to a local guest
_STRIP_ENV_KEYS = {
    "GOOGLE_API_KEY", "NVIDIA_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY",
    "AWS_SECRET_ACCESS_KEY", "AWS_ACCESS_KEY_ID", "DATABASE_URL",
}


@dataclass(frozen=True)
class SandboxLimits:
    """Resource ceilings enforced by the host, not the guest."""
    timeout: int = 15
    memory: str = "512m"
    cpus: str = "1.0"
    pids: int = 64
    tmpfs_size: str = "64m"
    user: str = "65534:65534"
    max_output_bytes: int = 1_000_000


@dataclass
class SandboxResult:
    """Raw outcome of one guest run."""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = -1
    timed_out: bool = False
    error: Optional[str] = None
    # Byte limit stdout ran past, when it was cut
    output_limit_exceeded: Optional[int] = None


def build_container_command(
    runtime: str,
    image: str,
    limits: SandboxLimits,
    script_dir: str,
    dataset_path: str,
    container_name: str,
) -> List[str]:
    """Build the ``docker run`` / ``podman run`` argv for one guest execution."""
    guest_dataset = f"{GUEST_DATA_DIR}/{os.path.basename(dataset_path)}"
    return [
        runtime,
        "run",
        "--rm",
        "--name", container_name,
        "--network=none",
        "--read-only",
        f"--memory={limits.memory}",
        f"--memory-swap={limits.memory}",
        f"--cpus={limits.cpus}",
        f"--pids-limit={limits.pids}",
        "--user", limits.user,
        "--cap-drop=ALL",
        "--security-opt=no-new-privileges",
        "--tmpfs", f"/tmp:rw,noexec,nosuid,size={limits.tmpfs_size}",
        "-v", f"{os.path.abspath(script_dir)}:{GUEST_SCRIPT_DIR}:ro",
        "-v", f"{os.path.abspath(dataset_path)}:{guest_dataset}:ro",
        "-e", f"{DATASET_ENV_VAR}={guest_dataset}",
        "-e", "OPENBLAS_NUM_THREADS=1",
        "-e", "OMP_NUM_THREADS=1",
        "-e", "MPLBACKEND=Agg",
        "-w", "/tmp",
        image,
        "python", "-I", f"{GUEST_SCRIPT_DIR}/{SCRIPT_NAME}",
    ]


def _preexec_limits(limits: SandboxLimits):
    """Build a preexec_fn applying rlimits to the local guest (Linux only).

    No memory rlimit: numpy and pandas mmap many shared objects and trip
    address-space limits long before they use real memory. The memory ceiling
    is only enforced by the container runtimes.
    """
    cpu_seconds = max(1, limits.timeout * 2)

    def apply() -> None:
        try:
            import resource
            resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 5))
            resource.setrlimit(resource.RLIMIT_FSIZE, (10 * 1024 * 1024, 10 * 1024 * 1024))
            resource.setrlimit(resource.RLIMIT_NOFILE, (128, 128))
        except (ImportError, ValueError, OSError):
            pass  # Non-Linux or insufficient permissions — rely on timeout

    return apply


async def _kill_container(runtime: str, container_name: str) -> None:
    """Force-remove a container that outlived its timeout."""
    try:
        proc = await asyncio.create_subprocess_exec(
            runtime, "rm", "-f", container_name,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await asyncio.wait_for(proc.wait(), timeout=10)
    except (OSError, asyncio.TimeoutError) as exc:
        logger.error("Failed to remove timed-out container %s: %s", container_name, exc)


async def run_in_sandbox(
    script: str,
    dataset_path: str,
    limits: SandboxLimits,
    runtime: str = "docker",
    image: str = "tabletalk-sandbox:latest",
) -> SandboxResult:
    """Run *script* once in a fresh environment with *dataset_path* mounted read-only.

    Args:
        script: Complete guest script (already wrapped by the harness).
        dataset_path: Host path of the dataset file.
        limits: Resource ceilings and wall-clock timeout.
        runtime: "docker", "podman" or "local".
        image: Container image (container runtimes only).

    Returns:
        SandboxResult with captured output, exit code and timeout flag.
    """
    work_dir = tempfile.mkdtemp(prefix="tabletalk_sandbox_")
    script_path = os.path.join(work_dir, SCRIPT_NAME)
    container_name = f"tabletalk-{uuid.uuid4().hex[:12]}"

    try:
        with open(script_path, "w", encoding="utf-8") as f:
            f.write(script)
        os.chmod(work_dir, 0o755)
        os.chmod(script_path, 0o644)

        if runtime in CONTAINER_RUNTIMES:
            cmd = build_container_command(runtime, image, limits, work_dir, dataset_path, container_name)
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        elif runtime == "local":
            sandbox_env = {
                k: v for k, v in os.environ.items()
                if k not in _STRIP_ENV_KEYS
            }
            sandbox_env[DATASET_ENV_VAR] = os.path.abspath(dataset_path)
            sandbox_env["OPENBLAS_NUM_THREADS"] = "1"
            sandbox_env["OMP_NUM_THREADS"] = "1"
            process = await asyncio.create_subprocess_exec(
                sys.executable, SCRIPT_NAME,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=work_dir,
                env=sandbox_env,
                preexec_fn=_preexec_limits(limits),
            )
        else:
            return SandboxResult(error=f"Unknown sandbox runtime: {runtime!r}")

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(),
                timeout=limits.timeout,
            )
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            if runtime in CONTAINER_RUNTIMES:
                await _kill_container(runtime, container_name)
            await process.wait()
            return SandboxResult(
                stderr=f"Execution timed out after {limits.timeout}s",
                exit_code=-1,
                timed_out=True,
                error=f"Timed out after {limits.timeout}s",
            )

        overflow = len(stdout_bytes) > limits.max_output_bytes
        if overflow:
            logger.warning(
                "Sandbox stdout exceeded %d bytes (%d produced)", limits.max_output_bytes, len(stdout_bytes)
            )
        return SandboxResult(
            stdout=stdout_bytes[:limits.max_output_bytes].decode("utf-8", errors="replace"),
            stderr=stderr_bytes[:limits.max_output_bytes].decode("utf-8", errors="replace"),
            exit_code=process.returncode if process.returncode is not None else -1,
            output_limit_exceeded=limits.max_output_bytes if overflow else None,
        )

    except OSError as e:
        logger.error("Sandbox execution failed: %s", e)
        return SandboxResult(stderr=str(e), error=f"Sandbox unavailable: {e}")

    finally:
        shutil.rmtree(work_dir, ignore_errors=True)


def check_runtime_available(runtime: str) -> bool:
    """Return True if the configured runtime binary is on PATH."""
    if runtime == "local":
        return True
    return shutil.which(runtime) is not None
