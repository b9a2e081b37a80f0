"""Copilot 响应文本规范化。

Copilot 返回的文本中夹带了私有标记：

- 引用标记：U+E200 … U+E201 包裹的一段 token，例如 "\\ue200cite\\ue202turn0search1\\ue201"。
- 伪标签：形如 <Cite> / </Entity> 的首字母大写标签，以及 HTML 换行 <br>。

本模块把引用标记改写为 [n] 形式的脚注编号，去掉伪标签，
并根据 attributions 生成一个去重后的 "Sources:" 附录，保证每个 [n] 都有对应条目。
所有函数都是纯函数。
"""

import re
from typing import Dict, Iterable, List, Tuple

from copilot_chat.domain.models import Attribution


CITATION_RE = re.compile("\ue200[^\ue200\ue201]*\ue201")
INLINE_TAG_RE = re.compile(r"</?[A-Z][A-Za-z0-9]*>")
LINE_BREAK_TAG_RE = re.compile(r"<br\s*/?\s*>", re.IGNORECASE)
TRAILING_SPACE_RE = re.compile(r"[ \t]+\n")
BLANK_LINES_RE = re.compile(r"\n{3,}")

SOURCES_HEADING = "Sources:"


def sanitize(text: str) -> str:
    """清理换行与伪标签，结果满足 sanitize(sanitize(x)) == sanitize(x)。"""

    if not text:
        return ""

    output = text.replace("\r\n", "\n").replace("\r", "\n")
    # 去掉标签后可能拼出新的标签（如 "<<B>br>"），重复直到不再变化
    while True:
        stripped = INLINE_TAG_RE.sub("", LINE_BREAK_TAG_RE.sub("\n", output))
        if stripped == output:
            break
        output = stripped
    output = TRAILING_SPACE_RE.sub("\n", output)
    output = BLANK_LINES_RE.sub("\n\n", output)
    return output.strip()


def rewrite_citations(text: str) -> Tuple[str, int]:
    """把引用标记从左到右替换为 [n]。

    同一条消息内相同的 token 复用同一个编号，新的 token 编号依次加 1。

    Returns:
        (改写后的文本, 不同 token 的数量)
    """

    if not text:
        return "", 0

    indices: Dict[str, int] = {}

    def _replace(match: "re.Match[str]") -> str:
        token = match.group(0)[1:-1].strip()
        if token not in indices:
            indices[token] = len(indices) + 1
        return f"[{indices[token]}]"

    return CITATION_RE.sub(_replace, text), len(indices)


def dedupe_attributions(attributions: Iterable[Attribution]) -> List[Attribution]:
    unique: List[Attribution] = []
    seen = set()
    for item in attributions:
        if not item.title and not item.url:
            continue
        if item.fingerprint in seen:
            continue
        seen.add(item.fingerprint)
        unique.append(item)
    return unique


def build_source_appendix(attributions: Iterable[Attribution], required_count: int = 0) -> str:
    """生成 "Sources:" 附录。

    条目数为 max(required_count, 去重后的 attribution 数)；
    缺少元数据的编号用 "Source n" 占位，保证正文里的每个 [n] 都能找到对应条目。
    """

    unique = dedupe_attributions(attributions)
    total = max(required_count, len(unique))
    if total <= 0:
        return ""

    lines = [SOURCES_HEADING]
    for index in range(1, total + 1):
        source = unique[index - 1] if index <= len(unique) else None
        title = (source.title if source else "") or f"Source {index}"
        if source and source.url:
            lines.append(f"{index}. {title} ({source.url})")
        else:
            lines.append(f"{index}. {title}")
    return "\n".join(lines)


def format_response_text(raw_text: str, attributions: Iterable[Attribution] = ()) -> str:
    """完整的规范化流程：引用改写 → sanitize → 拼接来源附录。

    去掉引用标记后正文为空的消息视为空消息，返回 ""。
    """

    if not sanitize(CITATION_RE.sub("", raw_text or "")):
        return ""

    rewritten, citation_count = rewrite_citations(raw_text)
    cleaned = sanitize(rewritten)
    appendix = build_source_appendix(attributions, citation_count)
    return f"{cleaned}\n\n{appendix}" if appendix else cleaned
