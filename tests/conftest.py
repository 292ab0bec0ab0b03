"""测试公共配置：在导入 governor 之前把数据库与日志目录指向临时路径。"""

from __future__ import annotations

import os
import tempfile

_TMP_ROOT = tempfile.mkdtemp(prefix="governor-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP_ROOT, 'governor.db')}")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP_ROOT, "logs"))
os.environ.setdefault("EXECUTION_MODE", "local")
