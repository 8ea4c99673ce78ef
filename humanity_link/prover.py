# humanity_link/prover.py
"""
Boundary call to the proof backend.

The backend is the Leo program's `prove_age` transition, run as

    leo run prove_age <subject>u16 <reference>u16 <threshold>u16

inside the program directory. One request spawns exactly one process, bounded
by a wall-clock budget; when the budget runs out the whole process group is
killed and reaped before `Timeout` is raised. No retries happen here.
"""
import logging
import os
import shlex
import signal
import subprocess
from typing import Optional, Sequence

from humanity_link import verdict
from humanity_link.domain import AttestationRequest, AttestationResult
from humanity_link.errors import BackendExecutionFailure, BackendUnavailable, Timeout

logger = logging.getLogger(__name__)

PROVER_COMMAND = os.environ.get("PROVER_COMMAND", "leo run prove_age")
PROVER_WORKDIR = os.environ.get("PROVER_WORKDIR") or None
PROVER_TIMEOUT = float(os.environ.get("PROVER_TIMEOUT", "30"))
PROVER_REAP_TIMEOUT = float(os.environ.get("PROVER_REAP_TIMEOUT", "5"))


def u16(value: int) -> str:
    return f"{value}u16"


class ProofInvoker:
    def __init__(self, command: Optional[Sequence[str]] = None, workdir: Optional[str] = None,
                 timeout: Optional[float] = None, reap_timeout: Optional[float] = None):
        self.command = list(command) if command else shlex.split(PROVER_COMMAND)
        self.workdir = workdir or PROVER_WORKDIR
        self.timeout = timeout if timeout is not None else PROVER_TIMEOUT
        self.reap_timeout = reap_timeout if reap_timeout is not None else PROVER_REAP_TIMEOUT

    def build_argv(self, request: AttestationRequest):
        return self.command + [
            u16(request.private_attribute),
            u16(request.reference_value),
            u16(request.threshold),
        ]

    def invoke(self, request: AttestationRequest) -> AttestationResult:
        request.validate()
        argv = self.build_argv(request)
        try:
            proc = subprocess.Popen(
                argv,
                cwd=self.workdir,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"[PROVER] Could not start backend {argv[0]!r}: {e}")
            raise BackendUnavailable(f"proof backend could not be started: {e}")

        try:
            stdout, stderr = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            self._kill(proc)
            logger.warning(f"[PROVER] Backend exceeded {self.timeout}s budget, pid {proc.pid} killed")
            raise Timeout(f"proof backend exceeded {self.timeout:g}s budget")

        if proc.returncode != 0:
            tail = (stderr or stdout or "").strip()[-500:]
            logger.error(f"[PROVER] Backend exited with status {proc.returncode}")
            raise BackendExecutionFailure(f"proof backend exited with status {proc.returncode}: {tail}")

        result = AttestationResult(
            verdict=verdict.parse(stdout),
            reference_value=request.reference_value,
            raw_output=stdout,
        )
        logger.info(f"[PROVER] Attestation completed (reference {request.reference_value})")
        return result

    def _kill(self, proc: subprocess.Popen) -> None:
        # backend runs in its own session, so its pid is also the group id
        try:
            if hasattr(os, "killpg"):
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass
        try:
            proc.communicate(timeout=self.reap_timeout)
        except subprocess.TimeoutExpired:
            # a descendant that left the group still holds our pipes
            logger.warning(f"[PROVER] Output pipes of pid {proc.pid} still open after kill, closing them")
            for pipe in (proc.stdout, proc.stderr):
                if pipe:
                    pipe.close()
            proc.wait()
