"""Diagnose what happens when we open the port and ask for identity."""

import serial
import time
import sys

def diagnose_connection(port="/dev/ttyUSB0"):
    """Show the raw bytes the supply returns to *IDN? and MEAS:ALL?."""

    print(f"\n=== Opening {port} ===")
    ser = serial.Serial(
        port=port,
        baudrate=9600,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        timeout=0.5,
        rtscts=False,
        dsrdtr=False,
        xonxoff=False
    )
    print(f"Port opened: {ser.is_open}")

    # Anything already waiting is stale
    pending = ser.in_waiting
    ser.reset_input_buffer()
    print(f"Discarded {pending} pending bytes")

    for command in ("*IDN?", "MEAS:ALL?"):
        print(f"\n=== Sending {command!r} + CRLF ===")
        ser.reset_input_buffer()
        sent = ser.write(command.encode("ascii") + b"\r\n")
        ser.flush()
        print(f"Sent {sent} bytes, flushed")

        start = time.time()
        received = bytearray()
        while time.time() - start < 2.0:
            byte = ser.read(1)
            if not byte:
                continue
            received += byte
            if byte == b"\n":
                break

        elapsed = time.time() - start
        if not received:
            print(f"*** NO REPLY after {elapsed:.2f}s ***")
        else:
            print(f"RX raw ({elapsed:.3f}s): {bytes(received)!r}")
            print(f"RX text: {received.decode('utf-8', errors='replace').strip()!r}")
            if not received.endswith(b"\n"):
                print("*** Reply not LF-terminated ***")

    # Hand the front panel back
    ser.write(b"SYST:COMM:RLST LOC\r\n")
    ser.flush()
    time.sleep(0.05)

    ser.close()
    print("\nPort closed")

if __name__ == "__main__":
    port = sys.argv[1] if len(sys.argv) > 1 else "/dev/ttyUSB0"
    diagnose_connection(port)
