"""
SDP bandwidth annotation.
"""

VIDEO_SECTION = "m=video"
BANDWIDTH_PREFIXES = ("b=AS:", "b=TIAS:")
CONNECTION_PREFIX = "c=IN"


def annotate_bandwidth(sdp: str, target_kbps: int) -> str:
    """Cap the video section of ``sdp`` at ``target_kbps``.

    Existing ``b=AS``/``b=TIAS`` lines inside the video section are dropped and
    a single ``b=AS:<target_kbps>`` line is inserted right after the section's
    ``c=IN`` line. Every other line is returned untouched and in order.
    """
    if VIDEO_SECTION not in sdp:
        return sdp

    separator = "\r\n" if "\r\n" in sdp else "\n"
    annotated = []
    in_video = False

    for line in sdp.split(separator):
        if line.startswith(VIDEO_SECTION):
            in_video = True
            annotated.append(line)
            continue
        if line.startswith("m="):
            in_video = False

        if in_video and line.startswith(BANDWIDTH_PREFIXES):
            continue

        annotated.append(line)

        if in_video and line.startswith(CONNECTION_PREFIX):
            annotated.append(f"b=AS:{target_kbps}")

    return separator.join(annotated)
