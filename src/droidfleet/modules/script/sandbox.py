"""
脚本沙箱

用户脚本是一个异步函数体：

    async def script(helpers, human, cloudflare, log, profile):
        <用户代码>

流程：清洗文本 -> 语法校验（不执行）-> 构造函数 -> 执行。
隔离仅靠参数作用域 + 精简的 __builtins__，不是安全边界。
"""
from __future__ import annotations

import ast
import builtins
import re
import textwrap
from typing import Any, Callable, Dict, Iterable, Optional

from ...core.config import settings
from ...core.errors import ScriptSyntaxError

SCRIPT_PARAMS = ("helpers", "human", "cloudflare", "log", "profile")
_FUNC_NAME = "__script__"
_FILENAME = "<script>"

_ZERO_WIDTH = re.compile("[\u200b-\u200d\ufeff]")
_UNICODE_SPACES = re.compile("[\u00a0\u2000-\u200a]")

_BLOCKED_BUILTINS = frozenset({
    "open", "exec", "eval", "compile", "input", "breakpoint",
    "globals", "vars", "exit", "quit", "help", "memoryview",
})


def sanitize_script(code: str) -> str:
    """Normalise text pasted from rich editors into plain source."""
    text = (code or "").lstrip("\ufeff")
    text = _ZERO_WIDTH.sub("", text)
    text = text.replace("\u2018", "'").replace("\u2019", "'")
    text = text.replace("\u201c", '"').replace("\u201d", '"')
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _UNICODE_SPACES.sub(" ", text)
    return textwrap.dedent(text).strip()


def compile_script(code: str):
    """Parse the body and wrap it as ``async def __script__(helpers, ...)``.

    Raises ScriptSyntaxError without executing anything.
    """
    try:
        body = ast.parse(code, filename=_FILENAME).body
    except SyntaxError as e:
        raise ScriptSyntaxError(f"Invalid script syntax: {_describe(e)}") from e

    wrapper = ast.parse(f"async def {_FUNC_NAME}({', '.join(SCRIPT_PARAMS)}):\n    pass\n")
    func = wrapper.body[0]
    # 空脚本保留 pass
    if body:
        func.body = body
    ast.fix_missing_locations(wrapper)

    try:
        return compile(wrapper, _FILENAME, "exec")
    except SyntaxError as e:
        # 循环外的 break、非法 nonlocal 等只在编译阶段报错
        raise ScriptSyntaxError(f"Invalid script syntax: {_describe(e)}") from e


def _describe(e: SyntaxError) -> str:
    if e.lineno:
        return f"{e.msg} (line {e.lineno})"
    return str(e.msg)


def _restricted_builtins(allowed_modules: Iterable[str]) -> Dict[str, Any]:
    allowed = set(allowed_modules)
    real_import = builtins.__import__

    def guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
        if level != 0 or name.split(".")[0] not in allowed:
            raise ImportError(f"Import of '{name}' is not allowed in scripts")
        return real_import(name, globals, locals, fromlist, level)

    safe = {k: v for k, v in vars(builtins).items() if k not in _BLOCKED_BUILTINS}
    safe["__import__"] = guarded_import
    return safe


class ScriptSandbox:
    """Compiles script text into a coroutine function bound to fixed capabilities."""

    def __init__(self, restricted: Optional[bool] = None, allowed_modules: Optional[Iterable[str]] = None) -> None:
        self.restricted = settings.script_restricted_builtins if restricted is None else restricted
        self.allowed_modules = list(settings.script_allowed_modules if allowed_modules is None else allowed_modules)

    def prepare(self, code: str) -> Callable[..., Any]:
        source = sanitize_script(code)
        compiled = compile_script(source)
        namespace: Dict[str, Any] = {
            "__name__": "droidfleet_script",
            "__builtins__": _restricted_builtins(self.allowed_modules) if self.restricted else builtins.__dict__,
        }
        exec(compiled, namespace)
        return namespace[_FUNC_NAME]

    async def run(self, code: str, helpers, human, cloudflare, log, profile) -> Any:
        fn = self.prepare(code)
        return await fn(helpers, human, cloudflare, log, profile)
