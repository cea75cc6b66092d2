"""
Bootstrap Payload Service

Architectural Intent:
- Renders the cloud-init user data that turns a bare instance into a proxy endpoint
- Installs V2Ray, writes a vmess inbound bound to the instance's uuid and port
- Installs an idle watchdog so forgotten endpoints terminate themselves

Design Decisions:
- Pure string rendering with string.Template; no provider calls here
- The watchdog script is embedded base64-encoded so it survives heredoc quoting
- The watchdog only fires during minutes 50-59, close to the hourly billing edge
"""

import base64
from string import Template

IDLE_MINUTES = 30

_WATCHDOG_SCRIPT = Template("""\
#!/bin/bash
ACCESS_LOG=/var/log/v2ray/access.log
MINUTE=$$(date +%M)

if [ "$$MINUTE" -lt 50 ]; then
    exit 0
fi

if [ -f "$$ACCESS_LOG" ]; then
    LAST=$$(stat -c %Y "$$ACCESS_LOG")
else
    LAST=$$(stat -c %Y /etc/v2ray/config.json)
fi
IDLE=$$(( ($$(date +%s) - LAST) / 60 ))

if [ "$$IDLE" -lt $idle_minutes ]; then
    exit 0
fi

TOKEN=$$(curl -s -X PUT "http://169.254.169.254/latest/api/token" \\
    -H "X-aws-ec2-metadata-token-ttl-seconds: 60")
INSTANCE_ID=$$(curl -s -H "X-aws-ec2-metadata-token: $$TOKEN" \\
    http://169.254.169.254/latest/meta-data/instance-id)
REGION=$$(curl -s -H "X-aws-ec2-metadata-token: $$TOKEN" \\
    http://169.254.169.254/latest/meta-data/placement/region)

logger -t anywhere-watchdog "idle for $${IDLE}m, terminating $$INSTANCE_ID"
aws ec2 terminate-instances --region "$$REGION" --instance-ids "$$INSTANCE_ID"
""")

_USER_DATA = Template("""\
#!/bin/bash
set -e

bash <(curl -L https://raw.githubusercontent.com/v2fly/fhs-install-v2ray/master/install-release.sh)

mkdir -p /etc/v2ray /var/log/v2ray
cat > /etc/v2ray/config.json <<'CONFIG'
{
  "log": {
    "access": "/var/log/v2ray/access.log",
    "error": "/var/log/v2ray/error.log",
    "loglevel": "warning"
  },
  "inbounds": [
    {
      "port": $port,
      "protocol": "vmess",
      "settings": {
        "clients": [
          {
            "id": "$uuid",
            "alterId": 0
          }
        ]
      }
    }
  ],
  "outbounds": [
    {
      "protocol": "freedom",
      "settings": {}
    }
  ]
}
CONFIG

systemctl enable v2ray
systemctl restart v2ray

echo '$watchdog' | base64 -d > /usr/local/bin/check_v2ray_activity.sh
chmod +x /usr/local/bin/check_v2ray_activity.sh
echo '* * * * * root /usr/local/bin/check_v2ray_activity.sh' > /etc/cron.d/v2ray_activity
""")


def build_watchdog_script(idle_minutes: int = IDLE_MINUTES) -> str:
    return _WATCHDOG_SCRIPT.substitute(idle_minutes=idle_minutes)


def build_user_data(uuid: str, port: int, idle_minutes: int = IDLE_MINUTES) -> str:
    """Render the bootstrap script for one proxy endpoint."""
    if not uuid:
        raise ValueError("uuid cannot be empty")
    if not (1 <= port <= 65535):
        raise ValueError(f"Invalid port: {port}")

    watchdog = base64.b64encode(
        build_watchdog_script(idle_minutes).encode("utf-8")
    ).decode("ascii")
    return _USER_DATA.substitute(uuid=uuid, port=port, watchdog=watchdog)
