"""PostgreSQL tool invocations used by the downgrade executor."""

from typing import List

from pgdowngrade.constants import DEFAULT_SUPERUSER


class PostgresService:
    """Builds and runs pg_ctl, pg_dumpall, initdb and psql command lines.

    Every call is a single external process whose exit status is the only
    contract; failures surface as ``ToolInvocationError`` from the runner.
    """

    RESTORE_DATABASE = "postgres"

    def __init__(self, command_runner, logger, socket_dir: str, superuser: str = DEFAULT_SUPERUSER):
        self.command_runner = command_runner
        self.logger = logger
        self.socket_dir = socket_dir
        self.superuser = superuser

    def _server_options(self) -> str:
        # Local socket only while the directory is being migrated.
        return f"-k {self.socket_dir} -c listen_addresses=''"

    def start_command(self, pg_data: str, log_file: str) -> List[str]:
        return ["pg_ctl", "-D", pg_data, "-w", "-l", log_file, "-o", self._server_options(), "start"]

    def stop_command(self, pg_data: str, wait: bool = True) -> List[str]:
        cmd = ["pg_ctl", "-D", pg_data]
        if wait:
            cmd.append("-w")
        cmd.append("stop")
        return cmd

    def start(self, pg_data: str, log_file: str):
        self.logger.info("Starting PostgreSQL on %s", pg_data)
        # The server log goes to a file so the streamed pipe closes when pg_ctl exits.
        self.command_runner.stream(self.start_command(pg_data, log_file), tool="pg_ctl")

    def stop(self, pg_data: str):
        self.logger.info("Stopping PostgreSQL on %s", pg_data)
        self.command_runner.stream(self.stop_command(pg_data), tool="pg_ctl")

    def stop_quietly(self, pg_data: str):
        """Stop without streaming, for cleanup after an earlier failure."""
        self.command_runner.run(self.stop_command(pg_data, wait=False), tool="pg_ctl", capture_output=True)

    def dump_all(self, dump_file: str):
        self.logger.info("Exporting all databases to %s", dump_file)
        self.command_runner.stream(
            ["pg_dumpall", "-h", self.socket_dir, "-U", self.superuser, "-f", dump_file],
            tool="pg_dumpall",
        )

    def initdb(self, pg_data: str):
        self.logger.info("Initializing new data directory at %s", pg_data)
        self.command_runner.stream(
            ["initdb", "-D", pg_data, "--username", self.superuser],
            tool="initdb",
        )

    def restore(self, dump_file: str):
        self.logger.info("Replaying %s", dump_file)
        self.command_runner.stream(
            [
                "psql",
                "-h",
                self.socket_dir,
                "-U",
                self.superuser,
                "-f",
                dump_file,
                self.RESTORE_DATABASE,
            ],
            tool="psql",
        )
