"""Show exactly what the sensor sends for each command and during streaming."""

import argparse
import time

import serial


def probe_sensor(port: str, baud: int, stream_s: float) -> None:
    """Send identity queries, then STA/STP, printing every raw line received."""

    print(f"\n=== Opening {port} ===")
    ser = serial.Serial(
        port=port,
        baudrate=baud,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        timeout=0.2,
        rtscts=False,
        dsrdtr=False,
        xonxoff=False
    )
    print(f"Port opened: {ser.is_open}")
    ser.reset_input_buffer()

    def show_replies(seconds: float) -> int:
        count = 0
        start = time.time()
        while time.time() - start < seconds:
            raw = ser.readline()
            if not raw:
                continue
            print(f"RX: {raw!r}")
            count += 1
        return count

    for cmd in ("ID?", "VER?", "FRC?"):
        print(f"\n=== Sending {cmd} ===")
        ser.write(cmd.encode("ascii") + b"\r\n")
        ser.flush()
        if show_replies(1.0) == 0:
            print("*** NO REPLY ***")

    print(f"\n=== Sending STA, streaming for {stream_s}s ===")
    ser.write(b"STA\r\n")
    ser.flush()
    lines = show_replies(stream_s)
    print(f"\nReceived {lines} lines while streaming")

    print("\n=== Sending STP ===")
    ser.write(b"STP\r\n")
    ser.flush()
    show_replies(1.0)

    ser.close()
    print("\nPort closed")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("port", nargs="?", default="/dev/ttyACM0")
    parser.add_argument("--baud", type=int, default=115200)
    parser.add_argument("--stream-seconds", type=float, default=15.0)
    args = parser.parse_args()
    probe_sensor(args.port, args.baud, args.stream_seconds)
