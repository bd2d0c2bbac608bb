"""
Export of backup tables through an external dump utility.

Supported tools, picked from the engine dialect:
- mysqldump (MySQL/MariaDB): password in a temporary option file
- pg_dump (PostgreSQL): password in the child's PGPASSWORD
- sqlite3 (SQLite): ``.dump <table>`` with LIKE wildcards escaped

Credentials never appear on the command line.
"""
import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine, URL

from dbreaper.reaper.errors import ExportError, InvalidInputError, ToolUnavailableError

logger = logging.getLogger(__name__)

DIRECTORY_MODE = 0o775

ToolResolver = Callable[[str], Optional[str]]
PreparedCommand = Tuple[List[str], Optional[Dict[str, str]]]


@dataclass(frozen=True)
class ConnectionParams:
    """Connection details handed to the dump tool; only set values are passed on"""
    dialect: str
    database: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    socket: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_url(cls, url: URL) -> "ConnectionParams":
        query = {k: v for k, v in url.query.items() if isinstance(v, str)}
        dialect = url.get_backend_name()
        socket = query.get("unix_socket") if dialect != "postgresql" else query.get("host")
        return cls(
            dialect=dialect,
            database=url.database,
            host=url.host,
            port=url.port,
            socket=socket,
            username=url.username,
            password=url.password,
        )

    @property
    def database_label(self) -> str:
        """Database name as used in dump file names"""
        if self.dialect == "sqlite":
            if not self.database or self.database == ":memory:":
                return "memory"
            return Path(self.database).stem
        return self.database or "default"


class DumpTool:
    """Builds the argument list for one dump utility"""
    name = ""

    @contextmanager
    def prepare(self, executable: str, params: ConnectionParams, backup_table_name: str) -> Iterator[PreparedCommand]:
        raise NotImplementedError


class MySQLDump(DumpTool):
    name = "mysqldump"

    @contextmanager
    def prepare(self, executable, params, backup_table_name):
        args = [executable]
        options_file = None
        if params.password:
            # --defaults-extra-file has to be the first option
            fd, options_file = tempfile.mkstemp(prefix="dbreaper-", suffix=".cnf")
            escaped = params.password.replace("\\", "\\\\").replace('"', '\\"')
            with os.fdopen(fd, "w") as f:
                f.write(f'[client]\npassword="{escaped}"\n')
            args.append(f"--defaults-extra-file={options_file}")

        if params.socket:
            args.append(f"--socket={params.socket}")
        if params.port:
            args.append(f"--port={params.port}")
        if params.host:
            args.append(f"--host={params.host}")
        args.append(f"--user={params.username or 'root'}")
        args.extend([params.database, backup_table_name])

        try:
            yield args, None
        finally:
            if options_file:
                os.unlink(options_file)


class PgDump(DumpTool):
    name = "pg_dump"

    @contextmanager
    def prepare(self, executable, params, backup_table_name):
        args = [executable, "--no-password"]
        if params.socket or params.host:
            args.append(f"--host={params.socket or params.host}")
        if params.port:
            args.append(f"--port={params.port}")
        if params.username:
            args.append(f"--username={params.username}")
        args.extend([f"--table={backup_table_name}", params.database])

        env = None
        if params.password:
            env = dict(os.environ, PGPASSWORD=params.password)
        yield args, env


class SQLiteDump(DumpTool):
    name = "sqlite3"

    @contextmanager
    def prepare(self, executable, params, backup_table_name):
        # .dump takes a LIKE pattern (ESCAPE '\'), and "_" is a wildcard there
        pattern = backup_table_name.replace("\\", "\\\\").replace("_", "\\_").replace("%", "\\%")
        yield [executable, params.database, f".dump {pattern}"], None


DUMP_TOOLS: Dict[str, DumpTool] = {
    "mysql": MySQLDump(),
    "mariadb": MySQLDump(),
    "postgresql": PgDump(),
    "sqlite": SQLiteDump(),
}


def dump_tool_for(dialect_name: str) -> DumpTool:
    try:
        return DUMP_TOOLS[dialect_name]
    except KeyError:
        raise InvalidInputError(f"No dump tool known for the {dialect_name} dialect")


class DumpExporter:
    """Runs the dump tool against a backup table and drops it on success"""

    def __init__(
        self,
        resolver: ToolResolver = shutil.which,
        tool_path: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.resolver = resolver
        self.tool_path = tool_path or None
        self.timeout = timeout

    def check_target(self, engine: Engine) -> ConnectionParams:
        """
        Make sure the dump tool will have a database to connect to.

        Raises:
            InvalidInputError: If the engine URL names no database, or an
                in-memory SQLite database another process can't open
        """
        params = ConnectionParams.from_url(engine.url)
        if not params.database or (params.dialect == "sqlite" and params.database == ":memory:"):
            raise InvalidInputError(
                f"Can't dump from {engine.url.render_as_string(hide_password=True)}: no database to export from"
            )
        return params

    def resolve_tool(self, dialect_name: str) -> str:
        """
        Resolve the dump executable for a dialect.

        Raises:
            ToolUnavailableError: If the executable can't be found
        """
        candidate = self.tool_path or dump_tool_for(dialect_name).name
        resolved = self.resolver(candidate)
        if not resolved:
            raise ToolUnavailableError(candidate)
        return resolved

    def export(
        self,
        engine: Engine,
        backup_table_name: str,
        output_path: Path,
        preserve_backup_table: bool = False,
        timeout: Optional[int] = None,
    ) -> Path:
        """
        Dump ``backup_table_name`` into ``output_path``.

        On success the backup table is dropped unless ``preserve_backup_table``.
        On failure the partial file is removed and the backup table is kept.

        Raises:
            ToolUnavailableError: If the dump tool can't be resolved
            ExportError: If the output directory can't be created, or the tool
                fails, can't be started or times out
        """
        tool = dump_tool_for(engine.dialect.name)
        executable = self.resolve_tool(engine.dialect.name)
        params = self.check_target(engine)
        timeout = timeout if timeout is not None else self.timeout

        output_path = Path(output_path)

        args = [executable]
        exit_status = None
        timed_out = False
        reason = None
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True, mode=DIRECTORY_MODE)
        except OSError as e:
            reason = f"could not create {output_path.parent}: {e}"
        else:
            try:
                with tool.prepare(executable, params, backup_table_name) as (args, env):
                    logger.debug(f"Running dump: {shlex.join(args)}")
                    try:
                        with open(output_path, "wb") as out:
                            completed = subprocess.run(args, stdout=out, env=env, timeout=timeout, check=False)
                        exit_status = completed.returncode
                    except subprocess.TimeoutExpired:
                        timed_out = True
            except OSError as e:
                reason = f"could not start: {e}"

        if exit_status == 0:
            logger.debug(f"Reaped data to {output_path}")
            if not preserve_backup_table:
                self.drop_backup_table(engine, backup_table_name)
            return output_path

        if output_path.is_file():
            output_path.unlink()
        error = ExportError(args, exit_status, backup_table_name, timed_out=timed_out, reason=reason)
        logger.error(str(error))
        raise error

    def drop_backup_table(self, engine: Engine, backup_table_name: str) -> None:
        backup = engine.dialect.identifier_preparer.quote_identifier(backup_table_name)
        with engine.begin() as conn:
            conn.execute(text(f"DROP TABLE IF EXISTS {backup}"))
        logger.debug(f"Dropped backup table {backup_table_name}")
