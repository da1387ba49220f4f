"""pytest 配置"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# 添加项目根目录到 Python 路径
ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR))

from llmplug.llm.transport import Transport  # noqa: E402
from llmplug.multimodal import FetchResponse  # noqa: E402

# 1x1 PNG
PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"
    b"\x08\x06\x00\x00\x00\x1f\x15\xc4\x89\x00\x00\x00\rIDATx\x9cc\xf8\x0f"
    b"\x00\x00\x01\x01\x00\x05\x18\xd8N\x00\x00\x00\x00IEND\xaeB`\x82"
)


class FakeTransport(Transport):
    """记录请求并回放预设响应/事件的传输"""

    def __init__(
        self,
        response: Optional[Dict[str, Any]] = None,
        events: Optional[List[Dict[str, Any]]] = None,
        fail_after: Optional[int] = None,
        error: Optional[Exception] = None,
        provider: str = "fake",
    ):
        super().__init__(provider)
        self.response = response or {}
        self.events = list(events or [])
        self.fail_after = fail_after
        self.error = error or ConnectionError("connection reset")
        self.requests: List[Dict[str, Any]] = []
        self.delivered = 0
        self.closed = False

    async def invoke(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self.requests.append(request)
        return self.response

    async def invoke_streaming(self, request: Dict[str, Any]):
        self.requests.append(request)
        try:
            for index, event in enumerate(self.events):
                if self.fail_after is not None and index >= self.fail_after:
                    raise self.error
                self.delivered += 1
                yield event
        finally:
            self.closed = True


class FakeFetcher:
    """按 URL 返回预设响应的获取器"""

    def __init__(self, responses: Optional[Dict[str, FetchResponse]] = None, error: Optional[Exception] = None):
        self.responses = responses or {}
        self.error = error
        self.calls: List[str] = []

    async def __call__(self, url: str) -> FetchResponse:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.responses[url]


@pytest.fixture
def png_bytes():
    """PNG 图片字节"""
    return PNG_BYTES


@pytest.fixture
def fake_fetcher():
    """返回 PNG 图片的获取器"""
    return FakeFetcher({
        "https://example.com/cat.png": FetchResponse(
            status=200,
            headers={"Content-Type": "image/png"},
            content=PNG_BYTES,
        ),
    })


@pytest.fixture
def make_transport():
    """创建 FakeTransport"""
    return FakeTransport


@pytest.fixture
def make_fetcher():
    """创建 FakeFetcher"""
    return FakeFetcher


@pytest.fixture
def workspace_dir(tmp_path):
    """创建临时工作目录"""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return str(workspace)


@pytest.fixture
def sample_config(workspace_dir):
    """创建示例配置文件"""
    config_dir = Path(workspace_dir) / "config"
    config_dir.mkdir()

    config_file = config_dir / "llmplug.yaml"
    config_file.write_text('''
provider: anthropic
api_key: test-api-key
api_base: https://api.example.com
model: test-model
timeout: 30
options:
  temperature: 0.2
  max_tokens: 256
''')
    return str(config_file)
