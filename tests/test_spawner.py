"""
JSONL Process Spawner Tests
===========================

Runs real child processes (the current Python interpreter with -c) to cover:
1. One parsed value per stdout line, in order
2. Blank and malformed lines are skipped
3. Lines split across reads are reassembled; a final unterminated line is kept
4. Non-zero exit raises ProcessExitError carrying stderr and the exit code
5. stdin payload delivery
6. Abort event and inactivity timeout
7. Concurrent spawns stay independent
"""

import asyncio
import sys
import textwrap

import pytest

from automode.spawner import (
    ProcessAbortedError,
    ProcessExitError,
    ProcessTimeoutError,
    SubprocessConfig,
    is_abort_error,
    spawn_jsonl_process,
)


def python_config(script: str, **kwargs) -> SubprocessConfig:
    return SubprocessConfig(
        command=sys.executable,
        args=["-c", textwrap.dedent(script)],
        **kwargs,
    )


async def collect(config: SubprocessConfig) -> list:
    return [event async for event in spawn_jsonl_process(config)]


# =============================================================================
# Parsing
# =============================================================================

class TestLineParsing:
    """stdout lines become parsed JSON values."""

    @pytest.mark.asyncio
    async def test_yields_each_line_in_order(self):
        events = await collect(python_config("""
            import json
            for i in range(3):
                print(json.dumps({"type": "message", "n": i}))
        """))
        assert [e["n"] for e in events] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_skips_blank_and_malformed_lines(self, caplog):
        events = await collect(python_config("""
            print('{"a": 1}')
            print('')
            print('not json at all')
            print('   ')
            print('{"b": 2}')
        """))
        assert events == [{"a": 1}, {"b": 2}]
        assert "malformed JSONL line" in caplog.text

    @pytest.mark.asyncio
    async def test_reassembles_line_split_across_writes(self):
        events = await collect(python_config("""
            import sys, time
            sys.stdout.write('{"type": "mes')
            sys.stdout.flush()
            time.sleep(0.1)
            sys.stdout.write('sage", "content": "hello"}\\n')
            sys.stdout.flush()
        """))
        assert events == [{"type": "message", "content": "hello"}]

    @pytest.mark.asyncio
    async def test_keeps_final_line_without_newline(self):
        events = await collect(python_config("""
            import sys
            sys.stdout.write('{"first": true}\\n{"last": true}')
        """))
        assert events == [{"first": True}, {"last": True}]

    @pytest.mark.asyncio
    async def test_large_line_is_not_truncated(self):
        events = await collect(python_config("""
            import json
            print(json.dumps({"content": "x" * 200000}))
        """))
        assert len(events[0]["content"]) == 200000


# =============================================================================
# Exit handling
# =============================================================================

class TestExitHandling:

    @pytest.mark.asyncio
    async def test_zero_exit_ends_normally(self):
        events = await collect(python_config("print('{}')"))
        assert events == [{}]

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_with_stderr(self):
        config = python_config("""
            import sys
            print('{"type": "init"}')
            sys.stderr.write('Error: not authenticated\\n')
            sys.exit(3)
        """)
        received = []
        with pytest.raises(ProcessExitError) as exc_info:
            async for event in spawn_jsonl_process(config):
                received.append(event)

        assert received == [{"type": "init"}]
        assert exc_info.value.exit_code == 3
        assert "not authenticated" in exc_info.value.stderr

    @pytest.mark.asyncio
    async def test_missing_executable_raises_os_error(self):
        config = SubprocessConfig(command="definitely-not-a-real-cli-binary")
        with pytest.raises(FileNotFoundError):
            await collect(config)


# =============================================================================
# stdin
# =============================================================================

class TestStdin:

    @pytest.mark.asyncio
    async def test_stdin_payload_is_delivered_and_closed(self):
        events = await collect(python_config(
            """
            import json, sys
            data = sys.stdin.read()
            print(json.dumps({"received": data}))
            """,
            stdin_data="implement the login page",
        ))
        assert events == [{"received": "implement the login page"}]


# =============================================================================
# Abort and timeout
# =============================================================================

class TestAbortAndTimeout:

    @pytest.mark.asyncio
    async def test_abort_event_kills_process(self):
        abort = asyncio.Event()
        config = python_config(
            """
            import time
            print('{"type": "init"}', flush=True)
            time.sleep(30)
            """,
            abort_event=abort,
        )

        received = []
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(ProcessAbortedError):
            async for event in spawn_jsonl_process(config):
                received.append(event)
                abort.set()

        assert received == [{"type": "init"}]
        assert loop.time() - started < 10

    @pytest.mark.asyncio
    async def test_abort_set_before_start_raises_immediately(self):
        abort = asyncio.Event()
        abort.set()
        with pytest.raises(ProcessAbortedError):
            await collect(python_config("print('{}')", abort_event=abort))

    @pytest.mark.asyncio
    async def test_inactivity_timeout_raises(self):
        config = python_config("import time; time.sleep(30)", timeout_seconds=0.3)
        with pytest.raises(ProcessTimeoutError) as exc_info:
            await collect(config)
        assert exc_info.value.timeout_seconds == 0.3
        assert isinstance(exc_info.value, ProcessExitError)

    def test_is_abort_error(self):
        assert is_abort_error(ProcessAbortedError())
        assert is_abort_error(asyncio.CancelledError())
        assert not is_abort_error(ProcessExitError("boom", 1))
        assert not is_abort_error(ProcessTimeoutError(1.0))


# =============================================================================
# Concurrency
# =============================================================================

class TestConcurrentSpawns:

    @pytest.mark.asyncio
    async def test_concurrent_spawns_do_not_mix_output(self):
        def config_for(name: str) -> SubprocessConfig:
            return python_config(f"""
                import json, time
                for i in range(5):
                    print(json.dumps({{"source": "{name}", "n": i}}), flush=True)
                    time.sleep(0.01)
            """)

        first, second = await asyncio.gather(
            collect(config_for("a")), collect(config_for("b"))
        )
        assert [(e["source"], e["n"]) for e in first] == [("a", i) for i in range(5)]
        assert [(e["source"], e["n"]) for e in second] == [("b", i) for i in range(5)]
