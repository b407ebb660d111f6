#!/usr/bin/env python3
"""
Pi Runbook: UD-CO2S Streaming Test
Expected: identity reported, then fresh CO2/humidity/temperature updates
"""

import time
from udco2s_lib import UDCO2SController

# ============================================================================
# CONFIGURATION - EDIT THIS
# ============================================================================
SERIAL_PORT = "/dev/ttyACM0"  # Change to your port
BAUD_RATE = 115200
RUN_DURATION_S = 30.0

# ============================================================================
# TEST SCRIPT - DO NOT EDIT BELOW
# ============================================================================

print("=" * 70)
print("Pi Runbook: UD-CO2S Streaming Validation")
print("=" * 70)
print(f"Port: {SERIAL_PORT}")
print(f"Baud: {BAUD_RATE}")
print(f"Duration: {RUN_DURATION_S}s")
print()

controller = UDCO2SController()

try:
    # Step 1: Connect and identify
    print("[1/4] Connecting to sensor...")
    controller.connect(port=SERIAL_PORT, baud=BAUD_RATE)
    print(f"      Device ID: {controller.query_device_id()}")
    print(f"      Firmware:  {controller.query_firmware_version()}")
    print(f"      FRC value: {controller.query_frc_value()}")
    print()

    # Step 2: Start streaming
    print("[2/4] Starting measurement...")
    if not controller.start_measurement():
        raise SystemExit("      Device did not acknowledge STA")
    print(f"      State: {controller.state.value}")
    print(f"      Collecting data for {RUN_DURATION_S}s...")
    print()

    # Step 3: Print every fresh measurement
    start_time = time.time()
    last_ts = None
    updates = 0

    while time.time() - start_time < RUN_DURATION_S:
        time.sleep(0.5)
        snapshot = controller.snapshot()
        if snapshot.timestamp is not None and snapshot.timestamp != last_ts:
            updates += 1
            last_ts = snapshot.timestamp
            elapsed = time.time() - start_time
            print(f"      [{elapsed:5.1f}s] CO2={snapshot.co2} ppm "
                  f"HUM={snapshot.humidity:.1f}% TMP={snapshot.temperature:.1f}C")
        if controller.fault is not None:
            print(f"      Stream failed: {controller.fault}")
            break

    # Step 4: Results
    print()
    print("[4/4] Test complete!")
    controller.stop_measurement()
    print(f"      Updates observed: {updates}")

    if updates >= 2:
        print("✓ PASS: Measurements are streaming")
    else:
        print("✗ FAIL: Fewer than 2 measurement updates")

finally:
    controller.disconnect()
    print()
    print("Disconnected.")
    print("=" * 70)
