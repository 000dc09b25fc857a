from pgdowngrade.services.postgres import PostgresService


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


class RecordingRunner:
    def __init__(self):
        self.streamed = []
        self.ran = []

    def stream(self, cmd, tool=None):
        self.streamed.append((tool, cmd))
        return 0

    def run(self, cmd, tool=None, **kwargs):
        self.ran.append((tool, cmd, kwargs))


def _service(runner):
    return PostgresService(
        command_runner=runner,
        logger=DummyLogger(),
        socket_dir="/controller/run",
        superuser="postgres",
    )


def test_start_writes_server_log_and_listens_on_socket_only():
    runner = RecordingRunner()

    _service(runner).start("/var/lib/pg", "/controller/run/server.log")

    tool, cmd = runner.streamed[0]
    assert tool == "pg_ctl"
    assert cmd[:4] == ["pg_ctl", "-D", "/var/lib/pg", "-w"]
    assert cmd[cmd.index("-l") + 1] == "/controller/run/server.log"
    assert "listen_addresses=''" in cmd[cmd.index("-o") + 1]
    assert cmd[-1] == "start"


def test_dump_and_restore_use_socket_directory():
    runner = RecordingRunner()
    service = _service(runner)

    service.dump_all("/var/lib/pg/downgrade_dump.sql")
    service.restore("/var/lib/pg.old/downgrade_dump.sql")

    assert runner.streamed[0] == (
        "pg_dumpall",
        ["pg_dumpall", "-h", "/controller/run", "-U", "postgres", "-f", "/var/lib/pg/downgrade_dump.sql"],
    )
    assert runner.streamed[1] == (
        "psql",
        [
            "psql",
            "-h",
            "/controller/run",
            "-U",
            "postgres",
            "-f",
            "/var/lib/pg.old/downgrade_dump.sql",
            "postgres",
        ],
    )


def test_initdb_uses_configured_superuser():
    runner = RecordingRunner()

    _service(runner).initdb("/var/lib/pg")

    assert runner.streamed == [("initdb", ["initdb", "-D", "/var/lib/pg", "--username", "postgres"])]


def test_stop_quietly_does_not_stream():
    runner = RecordingRunner()

    _service(runner).stop_quietly("/var/lib/pg")

    assert runner.streamed == []
    tool, cmd, kwargs = runner.ran[0]
    assert tool == "pg_ctl"
    assert cmd == ["pg_ctl", "-D", "/var/lib/pg", "stop"]
    assert kwargs["capture_output"] is True
