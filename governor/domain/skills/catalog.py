"""内置技能目录：远程诊断与修复脚本，随代码发布，不接受运行时修改。"""

from __future__ import annotations

from governor.domain.models import Skill

_REPO_LOOKUP = """REPO=""
for p in /root/openclaw /opt/openclaw /home/openclaw/openclaw; do
  if [ -d "$p/.git" ]; then
    REPO="$p"
    break
  fi
done"""

_SERVICES = "openclaw-gateway.service openclaw.service openclaw-gateway openclaw orbit-gateway"

HEALTH_CHECK = Skill(
    id="health-check",
    title="System Health Check",
    when="for system status or health",
    command=f"""
set +e
echo "=== Orbit Doctor ==="
if command -v orbit >/dev/null 2>&1; then
  orbit doctor 2>&1
else
  echo "orbit command not found"
fi

echo
echo "=== Gateway Port (18789) ==="
if command -v ss >/dev/null 2>&1; then
  ss -lntp | grep 18789 || echo "port 18789 not currently listening"
else
  netstat -lntp 2>/dev/null | grep 18789 || true
fi

echo
echo "=== OpenVPN Status ==="
if command -v systemctl >/dev/null 2>&1; then
  systemctl is-active openvpn 2>/dev/null || systemctl is-active openvpn-client@client 2>/dev/null || echo "openvpn service not active"
else
  echo "systemctl not found"
fi

echo
echo "=== Repository Status ==="
{_REPO_LOOKUP}
if [ -n "$REPO" ]; then
  cd "$REPO" && git status -sb
else
  echo "OpenClaw repository not found in expected paths"
fi
""",
)

QUICK_FIX = Skill(
    id="quick-fix",
    title="Auto Fix Orbit",
    when="to fix Orbit",
    command="""
set +e
echo "=== Orbit Auto Fix ==="
if command -v orbit >/dev/null 2>&1; then
  orbit doctor --fix 2>&1 || orbit doctor --fix --yes 2>&1 || true
  orbit config set gateway.mode local 2>&1 || true
  echo
  orbit doctor 2>&1 || true
else
  echo "orbit command not found"
fi
""",
)

VPN_STATUS = Skill(
    id="vpn-status",
    title="VPN Status",
    when="about the VPN",
    command="""
set +e
echo "=== VPN Service ==="
if command -v systemctl >/dev/null 2>&1; then
  systemctl status openvpn --no-pager -l 2>&1 || systemctl status openvpn-client@client --no-pager -l 2>&1 || true
else
  echo "systemctl not found"
fi

echo
echo "=== Routes ==="
ip route 2>&1 || true

echo
echo "=== DNS (/etc/resolv.conf) ==="
cat /etc/resolv.conf 2>&1 || true
""",
)

REPO_SYNC = Skill(
    id="repo-sync",
    title="Sync GitHub Repo",
    when="to update or sync the repository",
    command=f"""
set +e
echo "=== Repository Sync ==="
{_REPO_LOOKUP}
if [ -z "$REPO" ]; then
  echo "OpenClaw repository not found in expected paths"
  exit 1
fi

cd "$REPO"
git fetch --all --prune 2>&1
git pull --ff-only 2>&1 || git pull 2>&1
echo
git log --oneline -n 3 2>&1 || true
""",
)

SERVICE_RESTART = Skill(
    id="service-restart",
    title="Restart Services",
    when="to restart services",
    command=f"""
set +e
echo "=== Restarting Orbit/OpenClaw Services ==="
if command -v orbit >/dev/null 2>&1; then
  orbit restart 2>&1 || true
fi

for svc in {_SERVICES}; do
  systemctl restart "$svc" 2>/dev/null && echo "restarted: $svc"
done

echo
echo "=== Service Health ==="
for svc in {_SERVICES}; do
  systemctl is-active "$svc" 2>/dev/null && echo "$svc: active"
done
""",
)

DEFAULT_SKILLS: tuple[Skill, ...] = (
    HEALTH_CHECK,
    QUICK_FIX,
    VPN_STATUS,
    REPO_SYNC,
    SERVICE_RESTART,
)
