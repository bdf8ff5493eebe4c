"""
Service naming for ProcLink.

Labels external host nodes with the well-known service behind their port.
"""

from __future__ import annotations

from typing import Dict, Union

# Well-known port to service mappings
PORT_SERVICES: Dict[int, str] = {
    20: "FTP-DATA",
    21: "FTP",
    22: "SSH",
    23: "TELNET",
    25: "SMTP",
    53: "DNS",
    67: "DHCP",
    68: "DHCP",
    80: "HTTP",
    110: "POP3",
    123: "NTP",
    143: "IMAP",
    161: "SNMP",
    162: "SNMP",
    389: "LDAP",
    443: "HTTPS",
    445: "SMB",
    465: "SMTPS",
    514: "SYSLOG",
    587: "SMTP",
    636: "LDAPS",
    993: "IMAPS",
    995: "POP3S",
    1433: "MSSQL",
    1521: "ORACLE",
    1883: "MQTT",
    1900: "SSDP",
    3306: "MYSQL",
    3389: "RDP",
    3478: "STUN",
    5060: "SIP",
    5061: "SIPS",
    5222: "XMPP",
    5432: "POSTGRES",
    5672: "AMQP",
    6379: "REDIS",
    8080: "HTTP-ALT",
    8443: "HTTPS-ALT",
    8883: "MQTT-TLS",
    9200: "ELASTIC",
    27017: "MONGODB",
}


def identify_service(*ports: Union[int, str]) -> str:
    """
    Identify the likely service based on port numbers.

    Args:
        ports: Port numbers, as integers or numeric strings

    Returns:
        Service name string (e.g., "HTTP", "DNS") or "unknown"
    """
    for port in ports:
        try:
            number = int(port)
        except (TypeError, ValueError):
            continue
        if number in PORT_SERVICES:
            return PORT_SERVICES[number]

    return "unknown"
