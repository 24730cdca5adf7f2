#!/usr/bin/env python3
"""
Bench Runbook: Poll a power supply and toggle the waveform loop
Expected: ~10 polled samples over 10 seconds at 1 Hz, readings tracking the loop
"""

import time

from data_store import DataStore
from psu_lib import PowerSupplySession

# ============================================================================
# CONFIGURATION - EDIT THIS
# ============================================================================
SERIAL_PORT = "/dev/ttyUSB0"  # Change to your port (e.g. "COM3")
BAUD_RATE = 9600
POLL_INTERVAL_S = 1.0
RUN_DURATION_S = 10.0
LOOP_VOLTS = ("3.30", "5.00")  # Set to None to skip the waveform loop
LOOP_INTERVAL_S = 2.0
CURRENT_LIMIT = "0.100"

# ============================================================================
# TEST SCRIPT - DO NOT EDIT BELOW
# ============================================================================

print("=" * 70)
print("Bench Runbook: Polled Monitoring")
print("=" * 70)
print(f"Port: {SERIAL_PORT}")
print(f"Baud: {BAUD_RATE}")
print(f"Poll interval: {POLL_INTERVAL_S}s")
print(f"Duration: {RUN_DURATION_S}s")
print()

store = DataStore()
session = PowerSupplySession(on_update=store.record)

try:
    # Step 1: Connect
    print("[1/4] Connecting to power supply...")
    identity = session.connect(port=SERIAL_PORT, baud=BAUD_RATE)
    print(f"      Connected! Device: {identity or 'unknown'}")
    status = session.status
    print(f"      Output enabled: {status.output_enabled}")
    print(f"      Voltage setpoint: {status.voltage_setpoint}")
    print(f"      Current limit: {status.current_limit}")
    print()

    # Step 2: Program and enable output
    print("[2/4] Programming output...")
    session.set_current(CURRENT_LIMIT)
    if LOOP_VOLTS:
        session.set_voltage(LOOP_VOLTS[0])
    session.output_on()
    print()

    # Step 3: Poll (and loop)
    print(f"[3/4] Polling for {RUN_DURATION_S}s...")
    session.start_polling(POLL_INTERVAL_S)
    if LOOP_VOLTS:
        session.start_loop(LOOP_VOLTS[0], LOOP_VOLTS[1], LOOP_INTERVAL_S)
    print()

    start_time = time.time()
    last_count = 0

    while time.time() - start_time < RUN_DURATION_S:
        time.sleep(0.5)
        if len(store) > last_count:
            latest = store.get_latest()
            elapsed = time.time() - start_time
            print(f"      [{elapsed:5.1f}s] Sample #{len(store)}: "
                  f"{latest['voltage']:.3f} V, {latest['current']:.4f} A, "
                  f"{latest['power']:.3f} W, mode={latest['mode']}")
            last_count = len(store)

    session.stop_loop()
    session.stop_polling()

    # Step 4: Results
    print()
    print("[4/4] Run complete! Analyzing results...")
    stats = store.get_stats()
    expected_count = int(RUN_DURATION_S / POLL_INTERVAL_S)
    print(f"      Total samples: {stats['row_count']}")
    print(f"      Expected: ~{expected_count} (±2 due to timing)")
    print(f"      Mean voltage: {stats['mean_voltage']}")
    print(f"      Mean current: {stats['mean_current']}")
    print(f"      Max power: {stats['max_power']}")
    print()

    if expected_count - 2 <= stats["row_count"] <= expected_count + 2:
        print("✓ PASS: Sample count within expected range")
    else:
        print("✗ FAIL: Sample count outside expected range")
        print(f"  Expected {expected_count} ±2, got {stats['row_count']}")

    voltages, currents = session.history.snapshot()
    if len(voltages) == len(currents) == session.history.capacity:
        print("✓ PASS: Chart history full and channels aligned")
    else:
        print(f"✗ FAIL: History lengths {len(voltages)}/{len(currents)}")

finally:
    session.output_off()
    session.disconnect()
    print()
    print("Disconnected.")
    print("=" * 70)
