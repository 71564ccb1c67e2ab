"""
MCP Tool Tests for Memoer MCP
Copyright 2025 Jurden Bruce

Drives every tool through handle_tool_call and through the MCP server
request handlers, and checks the text responses, including error
responses. Also covers startup failure and the command line.

Usage:
    python tests/test_mcp_tools.py
    python tests/test_mcp_tools.py --verbose
"""

import os
import sys
import json
import shutil
import asyncio
import logging
import tempfile
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from mcp import types

from memoer_mcp import MemoerStore, create_server, main as server_main, parse_args, resolve_database_path, run, SERVER_NAME
from mcp_tools import get_tool_definitions, handle_tool_call
from models import DEFAULT_RESEARCH_APP
from utils import parse_log_level

CREATED_PREFIX = "Memory created successfully with ID: "


class McpToolsSuite:
    """Tool-level tests"""

    def __init__(self, verbose=False):
        self.verbose = verbose
        self.temp_dir = None
        self.memoer_store = None
        self.passed = 0
        self.failed = 0

    def log(self, msg, force=False):
        """Print if verbose or forced"""
        if self.verbose or force:
            print(msg)

    def assert_true(self, condition, test_name, message=""):
        """Assert a condition is true"""
        if condition:
            self.passed += 1
            self.log(f"  [PASS] {test_name}")
            return True
        else:
            self.failed += 1
            error_msg = f"  [FAIL] {test_name}"
            if message:
                error_msg += f": {message}"
            print(error_msg)
            return False

    def setup(self):
        """Create temporary test database"""
        self.log("\n=== SETUP ===", force=True)
        self.temp_dir = Path(tempfile.mkdtemp(prefix="memoer_tools_test_"))
        self.memoer_store = MemoerStore(self.temp_dir / "tools.db")
        self.log(f"Test database: {self.memoer_store.db_path}")
        self.log("Setup complete\n", force=True)

    def teardown(self):
        """Clean up test database"""
        self.log("\n=== TEARDOWN ===", force=True)
        if self.memoer_store:
            asyncio.run(self.memoer_store.shutdown())
        if self.temp_dir and self.temp_dir.exists():
            shutil.rmtree(self.temp_dir, ignore_errors=True)
        self.log("Teardown complete\n", force=True)

    async def call(self, name, arguments=None) -> str:
        result = await handle_tool_call(name, arguments, self.memoer_store)
        self.assert_true(len(result) == 1 and result[0].type == "text", f"{name} returns one text block")
        return result[0].text

    # ===== TOOL SURFACE =====

    def _test_tool_definitions(self):
        """Tool names and schemas"""
        self.log("\n--- Test: tool definitions ---")

        tools = {tool.name: tool for tool in get_tool_definitions()}
        self.assert_true(
            set(tools) == {"createMemory", "getMemories", "createResearchMemory", "getResearchMemories"},
            "four tools registered",
            str(sorted(tools))
        )
        self.assert_true(
            tools["createMemory"].inputSchema["required"] == ["content", "appName"],
            "createMemory requires content and appName"
        )
        research = tools["createResearchMemory"].inputSchema["properties"]
        self.assert_true(
            research["memoryType"]["enum"] == ["research_summary", "search_query", "web_results", "final_report"],
            "memoryType enum"
        )
        self.assert_true(research["appName"]["default"] == DEFAULT_RESEARCH_APP, "research app default")

        server = create_server(self.memoer_store)
        self.assert_true(server.name == SERVER_NAME, "server named memoer-mcp")

    # ===== END TO END =====

    async def _test_create_then_get(self):
        """createMemory followed by getMemories"""
        self.log("\n--- Test: createMemory -> getMemories ---")

        text = await self.call("createMemory", {"content": "hello", "appName": "test_agent"})
        self.assert_true(text.startswith(CREATED_PREFIX), "createMemory confirms", text)
        memory_id = text[len(CREATED_PREFIX):]
        self.assert_true(len(memory_id) == 36, "generated identifier returned", memory_id)

        text = await self.call("getMemories", {"appName": "test_agent", "limit": 1})
        records = json.loads(text)
        self.assert_true(len(records) == 1, "exactly one record")
        self.assert_true(records[0]["content"] == "hello", "content round-trips")
        self.assert_true(records[0]["id"] == memory_id, "same identifier")
        self.assert_true(records[0]["categories"] == [], "categories included")
        self.assert_true(records[0]["state"] == "active", "state serialized")

        await self.call("createMemory", {"content": "second", "appName": "Test Agent"})
        records = json.loads(await self.call("getMemories", {"appName": "test_agent"}))
        self.assert_true([r["content"] for r in records] == ["second", "hello"], "normalized app, newest first")

        records = json.loads(await self.call("getMemories", {}))
        self.assert_true(len(records) == 2, "no filters returns all memories")

        records = json.loads(await self.call("getMemories", {"category": "nothing-tagged"}))
        self.assert_true(records == [], "unknown category returns empty list")

    async def _test_research_tools(self):
        """createResearchMemory and getResearchMemories"""
        self.log("\n--- Test: research tools ---")

        text = await self.call("createResearchMemory", {
            "content": "LLM agents survey",
            "researchTopic": "agent memory",
            "memoryType": "web_results",
            "sourceReliability": "medium",
            "sourceType": "web",
            "researchLoopCount": 3,
            "metadata": json.dumps({"urls": ["https://example.com"]}),
        })
        self.assert_true(
            text.startswith("Research memory created successfully with ID: ")
            and text.endswith(", Topic: agent memory, Type: web_results"),
            "createResearchMemory confirms",
            text
        )
        self.assert_true(
            self.memoer_store.sqlite_store.get_app(DEFAULT_RESEARCH_APP) is not None,
            "default research app used"
        )

        records = json.loads(await self.call("getResearchMemories", {"researchTopic": "memory"}))
        self.assert_true(len(records) == 1, "topic substring match")
        record = records[0]
        self.assert_true(record["researchLoopCount"] == 3, "loop count serialized")
        self.assert_true(
            {"userId", "appId", "createdAt", "updatedAt", "researchTopic", "memoryType",
             "sourceReliability", "sourceType"} <= set(record),
            "camelCase record keys",
            str(sorted(record))
        )
        self.assert_true("research_topic" not in record, "no snake_case keys")
        self.assert_true(record["sourceReliability"] == "medium", "reliability serialized")
        self.assert_true(json.loads(record["metadata"]) == {"urls": ["https://example.com"]}, "metadata string kept")

        records = json.loads(await self.call("getResearchMemories", {"memoryType": "final_report"}))
        self.assert_true(records == [], "memory type filter excludes")

        records = json.loads(await self.call("getResearchMemories", {"sourceType": "web", "limit": 5}))
        self.assert_true(len(records) == 1, "source type filter")

    # ===== ERROR RESPONSES =====

    async def _test_error_responses(self):
        """Invalid input is reported as text, never raised"""
        self.log("\n--- Test: error responses ---")

        text = await self.call("createMemory", {"content": "no app"})
        prefix = "Error creating memory: "
        self.assert_true(text.startswith(prefix), "missing appName reported", text)
        detail = json.loads(text[len(prefix):])
        self.assert_true(detail["type"] == "ValidationError", "error type included")
        self.assert_true(detail["tool"] == "createMemory", "tool name included")

        text = await self.call("createResearchMemory", {
            "content": "x", "researchTopic": "y", "memoryType": "not-a-type",
        })
        self.assert_true(text.startswith("Error creating research memory: "), "bad memoryType reported", text)

        text = await self.call("createResearchMemory", {
            "content": "x", "researchTopic": "y", "memoryType": "final_report", "sourceReliability": "certain",
        })
        self.assert_true(text.startswith("Error creating research memory: "), "bad sourceReliability reported")

        text = await self.call("getMemories", {"limit": -1})
        self.assert_true(text.startswith("Error retrieving memories: "), "negative limit reported", text)

        text = await self.call("getResearchMemories", {"limit": "many"})
        self.assert_true(text.startswith("Error retrieving research memories: "), "non-integer limit reported")

        text = await self.call("deleteEverything", {})
        self.assert_true(json.loads(text) == {"error": "Unknown tool: deleteEverything"}, "unknown tool reported")

        memories_before = self.memoer_store.sqlite_store.count("memories")
        self.assert_true(memories_before == 3, "failed calls stored nothing", f"{memories_before} memories")

    async def _test_closed_store(self):
        """Storage failures become error text"""
        self.log("\n--- Test: closed store ---")

        closed = MemoerStore(self.temp_dir / "closed.db")
        await closed.shutdown()

        result = await handle_tool_call("getMemories", {}, closed)
        self.assert_true(result[0].text.startswith("Error retrieving memories: "), "query failure reported")

        result = await handle_tool_call("createMemory", {"content": "x", "appName": "y"}, closed)
        detail = json.loads(result[0].text[len("Error creating memory: "):])
        self.assert_true(detail["type"] == "RuntimeError", "connection failure reported", result[0].text)

    async def _test_server_dispatch(self):
        """Requests routed through the MCP server reach the tool error text"""
        self.log("\n--- Test: server dispatch ---")

        server = create_server(self.memoer_store)

        async def dispatch(name, arguments):
            handler = server.request_handlers[types.CallToolRequest]
            response = await handler(types.CallToolRequest(
                method="tools/call",
                params=types.CallToolRequestParams(name=name, arguments=arguments),
            ))
            return getattr(response, "root", response)

        listed = await server.request_handlers[types.ListToolsRequest](
            types.ListToolsRequest(method="tools/list")
        )
        listed = getattr(listed, "root", listed)
        self.assert_true(len(listed.tools) == 4, "server lists four tools")

        result = await dispatch("getMemories", {"limit": -1})
        text = result.content[0].text
        self.assert_true(text.startswith("Error retrieving memories: "), "negative limit reaches tool handler", text)

        result = await dispatch("createResearchMemory", {
            "content": "x", "researchTopic": "y", "memoryType": "bogus",
        })
        text = result.content[0].text
        self.assert_true(
            text.startswith("Error creating research memory: "),
            "bad memoryType reaches tool handler",
            text
        )
        self.assert_true(json.loads(text[len("Error creating research memory: "):])["type"] == "ValidationError",
                         "pydantic validation reported")

        result = await dispatch("getMemories", {"appName": "test_agent", "limit": 1})
        records = json.loads(result.content[0].text)
        self.assert_true(not result.isError and len(records) == 1, "valid call served through server")

    # ===== CONFIGURATION =====

    def _test_resolve_database_path(self):
        """Explicit path, DATABASE_URL, then default"""
        self.log("\n--- Test: resolve_database_path ---")

        saved = os.environ.get("DATABASE_URL")
        try:
            explicit = self.temp_dir / "explicit.db"
            os.environ["DATABASE_URL"] = f"file:{self.temp_dir / 'env.db'}"
            path = resolve_database_path(str(explicit))
            self.assert_true(path == explicit.resolve(), "explicit argument wins")
            self.assert_true(os.environ["DATABASE_URL"] == f"file:{explicit.resolve()}", "DATABASE_URL written back")

            os.environ["DATABASE_URL"] = f"file:{self.temp_dir / 'env.db'}"
            path = resolve_database_path()
            self.assert_true(path == (self.temp_dir / "env.db").resolve(), "file: prefix stripped")

            os.environ["DATABASE_URL"] = str(self.temp_dir / "bare.db")
            path = resolve_database_path()
            self.assert_true(path == (self.temp_dir / "bare.db").resolve(), "bare DATABASE_URL accepted")

            del os.environ["DATABASE_URL"]
            path = resolve_database_path()
            self.assert_true(path == (Path.cwd() / "memoer.db").resolve(), "defaults to ./memoer.db")
            self.assert_true(path.is_absolute(), "resolved path is absolute")
        finally:
            if saved is None:
                os.environ.pop("DATABASE_URL", None)
            else:
                os.environ["DATABASE_URL"] = saved

        nested = MemoerStore(self.temp_dir / "nested" / "dir" / "memoer.db")
        try:
            self.assert_true(nested.db_path.exists(), "parent directories created")
        finally:
            asyncio.run(nested.shutdown())

    def _test_startup_and_cli(self):
        """Startup failure exits 1, CLI arguments and log levels"""
        self.log("\n--- Test: startup and CLI ---")

        args = parse_args([])
        self.assert_true(args.db is None and args.log_level is None, "no arguments, no overrides")
        args = parse_args(["--db", "x.db", "--log-level", "warning"])
        self.assert_true(args.db == "x.db" and args.log_level == "WARNING", "arguments parsed")

        try:
            parse_args(["--log-level", "loud"])
            code = None
        except SystemExit as e:
            code = e.code
        self.assert_true(code == 2, "unknown --log-level rejected by argparse", str(code))

        self.assert_true(parse_log_level("debug") == logging.DEBUG, "level names are case-insensitive")
        self.assert_true(parse_log_level("loud") == logging.INFO, "unknown level falls back to INFO")
        self.assert_true(parse_log_level(None) == logging.INFO, "missing level falls back to INFO")

        # A regular file where the database directory should be
        blocker = self.temp_dir / "not_a_dir"
        blocker.write_text("occupied")
        bad_db = str(blocker / "memoer.db")

        saved_url = os.environ.get("DATABASE_URL")
        root_logger = logging.getLogger()
        saved_level = root_logger.level
        try:
            try:
                asyncio.run(server_main(bad_db))
                code = None
            except SystemExit as e:
                code = e.code
            self.assert_true(code == 1, "unusable database path exits 1", str(code))

            try:
                run(["--db", bad_db, "--log-level", "debug"])
                code = None
            except SystemExit as e:
                code = e.code
            self.assert_true(code == 1, "run() exits 1 on startup failure", str(code))
            self.assert_true(root_logger.level == logging.DEBUG, "--log-level applied")
        finally:
            root_logger.setLevel(saved_level)
            if saved_url is None:
                os.environ.pop("DATABASE_URL", None)
            else:
                os.environ["DATABASE_URL"] = saved_url

    # ===== RUN ALL TESTS =====

    def run_all_tests(self):
        """Execute all test methods"""
        print("\n" + "="*70)
        print("Memoer MCP - Tool Test Suite")
        print("="*70)

        self.setup()

        async def run_async_tests():
            await self._test_create_then_get()
            await self._test_research_tools()
            await self._test_error_responses()
            await self._test_closed_store()
            await self._test_server_dispatch()

        try:
            self._test_tool_definitions()
            asyncio.run(run_async_tests())
            self._test_resolve_database_path()
            self._test_startup_and_cli()
        except Exception as e:
            self.failed += 1
            print(f"  [FAIL] Test execution error: {e}")

        self.teardown()

        print("="*70)
        print("RESULTS")
        print("="*70)
        print(f"Passed: {self.passed}")
        print(f"Failed: {self.failed}")
        print(f"Total:  {self.passed + self.failed}")

        if self.failed == 0:
            print("\nALL TESTS PASSED")
            return 0
        else:
            print(f"\n{self.failed} TEST(S) FAILED")
            return 1


def test_mcp_tools():
    """pytest entry point"""
    assert McpToolsSuite().run_all_tests() == 0


def main():
    """Main test runner"""
    import argparse

    parser = argparse.ArgumentParser(description="Run Memoer MCP tool tests")
    parser.add_argument('--verbose', '-v', action='store_true', help="Verbose output")
    args = parser.parse_args()

    tester = McpToolsSuite(verbose=args.verbose)
    sys.exit(tester.run_all_tests())


if __name__ == "__main__":
    main()
