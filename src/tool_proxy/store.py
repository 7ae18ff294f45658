"""Durable SQLite storage for the tool registry and discovery cache."""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from tool_proxy.models import Server, Tool, ToolKind, remote_origin

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS tools (
	id TEXT PRIMARY KEY,
	name TEXT NOT NULL DEFAULT '',
	description TEXT NOT NULL DEFAULT '',
	kind TEXT NOT NULL,
	entry_point TEXT NOT NULL,
	authentication TEXT,
	enabled INTEGER NOT NULL DEFAULT 1,
	input_schema TEXT NOT NULL DEFAULT '{}',
	timeout REAL,
	created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS servers (
	id TEXT PRIMARY KEY,
	transport TEXT NOT NULL DEFAULT 'stdio',
	command TEXT NOT NULL DEFAULT '',
	args TEXT NOT NULL DEFAULT '[]',
	env TEXT NOT NULL DEFAULT '{}',
	url TEXT NOT NULL DEFAULT '',
	last_discovered_at TEXT
);

CREATE TABLE IF NOT EXISTS server_tools (
	id TEXT PRIMARY KEY,
	server_id TEXT NOT NULL REFERENCES servers(id) ON DELETE CASCADE,
	name TEXT NOT NULL,
	description TEXT NOT NULL DEFAULT '',
	enabled INTEGER NOT NULL DEFAULT 1,
	input_schema TEXT NOT NULL DEFAULT '{}',
	created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_server_tools_server ON server_tools(server_id);
"""


class ToolStore:
	"""SQLite persistence for local tools, servers and their last catalogs.

	The store is only ever called by ProxyState while it holds the write
	lock (or during startup), so writes are never interleaved.
	"""

	def __init__(self, db_path: str | Path = ":memory:") -> None:
		path = str(db_path)
		if path != ":memory:":
			Path(path).parent.mkdir(parents=True, exist_ok=True)
		self.conn = sqlite3.connect(path, check_same_thread=False)
		self.conn.row_factory = sqlite3.Row
		if path != ":memory:":
			self.conn.execute("PRAGMA journal_mode=WAL")
			self.conn.execute("PRAGMA busy_timeout=5000")
		self.conn.execute("PRAGMA foreign_keys=ON")
		self.conn.executescript(SCHEMA_SQL)
		self._migrate_server_tools_enabled()
		logger.debug("Opened tool store: %s", path)

	def _migrate_server_tools_enabled(self) -> None:
		"""Add enabled column to server_tools for stores created before it existed."""
		try:
			self.conn.execute("ALTER TABLE server_tools ADD COLUMN enabled INTEGER NOT NULL DEFAULT 1")
			logger.debug("Migration: added column server_tools.enabled")
		except sqlite3.OperationalError as exc:
			if "duplicate column name" not in str(exc):
				logger.warning("Migration failed for server_tools.enabled: %s", exc)
				raise

	def close(self) -> None:
		self.conn.close()

	def __enter__(self) -> ToolStore:
		return self

	def __exit__(self, *args: object) -> None:
		self.close()

	# -- local tools --

	def insert_tool(self, tool: Tool) -> None:
		if tool.kind is None:
			raise ValueError(f"Only local tools are stored in the tools table: {tool.id}")
		with self.conn:
			self.conn.execute(
				"""INSERT INTO tools
				(id, name, description, kind, entry_point, authentication,
				enabled, input_schema, timeout, created_at)
				VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
				(
					tool.id, tool.name, tool.description, tool.kind.value,
					tool.entry_point,
					json.dumps(tool.authentication) if tool.authentication is not None else None,
					int(tool.enabled), json.dumps(tool.input_schema),
					tool.timeout, tool.created_at,
				),
			)

	def update_tool_enabled(self, tool_id: str, enabled: bool) -> bool:
		with self.conn:
			cursor = self.conn.execute(
				"UPDATE tools SET enabled=? WHERE id=?", (int(enabled), tool_id),
			)
		return cursor.rowcount > 0

	def update_tool_authentication(self, tool_id: str, authentication: Any) -> bool:
		with self.conn:
			cursor = self.conn.execute(
				"UPDATE tools SET authentication=? WHERE id=?",
				(json.dumps(authentication) if authentication is not None else None, tool_id),
			)
		return cursor.rowcount > 0

	def delete_tool(self, tool_id: str) -> bool:
		with self.conn:
			cursor = self.conn.execute("DELETE FROM tools WHERE id=?", (tool_id,))
		return cursor.rowcount > 0

	def list_tools(self) -> list[Tool]:
		rows = self.conn.execute("SELECT * FROM tools ORDER BY created_at ASC").fetchall()
		return [self._row_to_tool(r) for r in rows]

	# -- servers and catalogs --

	def upsert_server(self, server: Server) -> None:
		with self.conn:
			self.conn.execute(
				"""INSERT INTO servers (id, transport, command, args, env, url, last_discovered_at)
				VALUES (?, ?, ?, ?, ?, ?, ?)
				ON CONFLICT(id) DO UPDATE SET
					transport=excluded.transport, command=excluded.command,
					args=excluded.args, env=excluded.env, url=excluded.url""",
				(
					server.id, server.transport, server.command,
					json.dumps(server.args), json.dumps(server.env), server.url,
					server.last_discovered_at,
				),
			)

	def delete_server(self, server_id: str) -> bool:
		with self.conn:
			cursor = self.conn.execute("DELETE FROM servers WHERE id=?", (server_id,))
		return cursor.rowcount > 0

	def list_servers(self) -> list[Server]:
		rows = self.conn.execute("SELECT * FROM servers ORDER BY id ASC").fetchall()
		return [
			Server(
				id=r["id"],
				transport=r["transport"],
				command=r["command"],
				args=json.loads(r["args"]),
				env=json.loads(r["env"]),
				url=r["url"],
				last_discovered_at=r["last_discovered_at"],
			)
			for r in rows
		]

	def replace_catalog(self, server_id: str, tools: list[Tool], discovered_at: str) -> None:
		"""Swap a server's stored catalog in one transaction."""
		with self.conn:
			self.conn.execute("DELETE FROM server_tools WHERE server_id=?", (server_id,))
			self.conn.executemany(
				"""INSERT INTO server_tools (id, server_id, name, description, enabled, input_schema, created_at)
				VALUES (?, ?, ?, ?, ?, ?, ?)""",
				[
					(
						t.id, server_id, t.name, t.description, int(t.enabled),
						json.dumps(t.input_schema), t.created_at,
					)
					for t in tools
				],
			)
			self.conn.execute(
				"UPDATE servers SET last_discovered_at=? WHERE id=?",
				(discovered_at, server_id),
			)

	def update_server_tool_enabled(self, tool_id: str, enabled: bool) -> bool:
		with self.conn:
			cursor = self.conn.execute(
				"UPDATE server_tools SET enabled=? WHERE id=?", (int(enabled), tool_id),
			)
		return cursor.rowcount > 0

	def load_catalogs(self) -> dict[str, list[Tool]]:
		catalogs: dict[str, list[Tool]] = {}
		rows = self.conn.execute(
			"SELECT * FROM server_tools ORDER BY server_id ASC, name ASC",
		).fetchall()
		for r in rows:
			catalogs.setdefault(r["server_id"], []).append(
				Tool(
					id=r["id"],
					name=r["name"],
					description=r["description"],
					enabled=bool(r["enabled"]),
					origin=remote_origin(r["server_id"]),
					input_schema=json.loads(r["input_schema"]),
					created_at=r["created_at"],
				)
			)
		return catalogs

	@staticmethod
	def _row_to_tool(row: sqlite3.Row) -> Tool:
		auth = row["authentication"]
		return Tool(
			id=row["id"],
			name=row["name"],
			description=row["description"],
			kind=ToolKind(row["kind"]),
			entry_point=row["entry_point"],
			authentication=json.loads(auth) if auth is not None else None,
			enabled=bool(row["enabled"]),
			input_schema=json.loads(row["input_schema"]),
			timeout=row["timeout"],
			created_at=row["created_at"],
		)
