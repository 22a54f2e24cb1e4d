import pytest

from droidfleet.core.errors import ScriptSyntaxError
from droidfleet.modules.script.sandbox import ScriptSandbox, compile_script, sanitize_script


def test_sanitize_normalizes_pasted_text():
    raw = "\ufeff  x = \u2018a\u2019\r\n  y = \u201cb\u201d\u200b\r  z = 1\n"
    assert sanitize_script(raw) == "x = 'a'\ny = \"b\"\nz = 1"


def test_sanitized_smart_quote_script_compiles():
    compile_script(sanitize_script("log(\u201chello\u201d)\nreturn \u2018ok\u2019"))


def test_syntax_error_is_reported_without_running():
    with pytest.raises(ScriptSyntaxError, match="Invalid script syntax"):
        compile_script("if True\n    return 1")


def test_break_outside_loop_is_a_syntax_error():
    with pytest.raises(ScriptSyntaxError, match="Invalid script syntax"):
        compile_script("break")


@pytest.mark.asyncio
async def test_run_passes_capabilities_and_returns_value():
    sandbox = ScriptSandbox(restricted=True, allowed_modules=["json"])
    code = """
    import json
    log("starting")
    return json.dumps({"profile": profile, "helpers": helpers})
    """
    logs = []
    result = await sandbox.run(code, "H", "U", "C", logs.append, 7)
    assert result == '{"profile": 7, "helpers": "H"}'
    assert logs == ["starting"]


@pytest.mark.asyncio
async def test_await_works_in_body():
    async def fetch():
        return 41

    result = await ScriptSandbox().run("value = await helpers()\nreturn value + 1", fetch, None, None, print, None)
    assert result == 42


@pytest.mark.asyncio
async def test_empty_script_returns_none():
    assert await ScriptSandbox().run("   \n", None, None, None, print, None) is None


@pytest.mark.asyncio
async def test_restricted_builtins_hide_open_and_block_imports():
    sandbox = ScriptSandbox(restricted=True, allowed_modules=["json"])
    with pytest.raises(NameError):
        await sandbox.run("open('/etc/passwd')", None, None, None, print, None)
    with pytest.raises(ImportError, match="not allowed"):
        await sandbox.run("import os", None, None, None, print, None)


@pytest.mark.asyncio
async def test_unrestricted_mode_keeps_full_builtins():
    sandbox = ScriptSandbox(restricted=False)
    result = await sandbox.run("import os\nreturn callable(open)", None, None, None, print, None)
    assert result is True
