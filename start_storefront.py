#!/usr/bin/env python3
"""Free the storefront ports, rebuild the containers and wait for /health.

With --stop, bring the stack down instead.
"""
import os
import sys
import json
import subprocess
import time
import platform
import argparse
import urllib.request
import urllib.error

# --- Configuration ---
SERVICES = {
    "mongodb": 27017,
    "api-gateway": 3000,
    "product-service": 3001,
    "user-service": 3002,
    "order-service": 3003,
    "cart-service": 3004,
}
HTTP_SERVICES = [name for name in SERVICES if name != "mongodb"]

# --- Colors ---
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'

if platform.system() == "Windows":
    os.system('color')  # Enable ANSI colors in Windows terminal

def log(msg, color=Colors.ENDC, bold=False, end="\n"):
    prefix = Colors.BOLD if bold else ""
    print(f"{prefix}{color}{msg}{Colors.ENDC}", end=end, flush=True)

# --- Port Management ---

def get_process_on_port(port):
    """Finds the PID of the process listening on the given port."""
    try:
        if platform.system() == "Windows":
            cmd = f'netstat -ano | findstr :{port}'
            result = subprocess.run(cmd, shell=True, capture_output=True, text=True)
            for line in result.stdout.strip().splitlines():
                if f":{port}" in line and "LISTENING" in line:
                    return line.split()[-1]
        else:
            result = subprocess.run(['lsof', '-t', f'-i:{port}'], capture_output=True, text=True)
            if result.returncode == 0 and result.stdout:
                return result.stdout.strip().splitlines()[0]
    except OSError as e:
        log(f"Error checking port {port}: {e}", Colors.WARNING)
    return None

def kill_process(pid):
    try:
        if platform.system() == "Windows":
            subprocess.run(f"taskkill /F /PID {pid}", shell=True, capture_output=True)
        else:
            subprocess.run(['kill', '-9', str(pid)], capture_output=True)
        return True
    except OSError as e:
        log(f"  └─ Failed to kill PID {pid}: {e}", Colors.FAIL)
        return False

def clean_ports():
    log("[1/3] Checking ports...", Colors.BLUE, bold=True)
    for service, port in SERVICES.items():
        pid = get_process_on_port(port)
        if not pid:
            log(f"✓ {service} port {port}: AVAILABLE", Colors.GREEN)
            continue
        log(f"✓ {service} port {port}: IN USE (PID: {pid}), killing...", Colors.WARNING, end=" ")
        log("DONE" if kill_process(pid) else "FAILED", Colors.GREEN)

# --- Docker Management ---

def start_docker(no_build=False):
    log("\n[2/3] Starting Docker services...", Colors.BLUE, bold=True)
    subprocess.run(["docker", "compose", "down"], check=False)
    cmd = ["docker", "compose", "up", "-d"]
    if not no_build:
        cmd.append("--build")
    try:
        subprocess.run(cmd, check=True)
        log("✓ Services started", Colors.GREEN)
    except subprocess.CalledProcessError:
        log("❌ Failed to start Docker services", Colors.FAIL)
        sys.exit(1)

def stop_docker():
    log("\nStopping storefront services...", Colors.BLUE, bold=True)
    try:
        subprocess.run(["docker", "compose", "down", "--remove-orphans"], check=True)
    except subprocess.CalledProcessError:
        log("❌ Failed to stop Docker services", Colors.FAIL)
        sys.exit(1)

    busy = {service: port for service, port in SERVICES.items() if get_process_on_port(port)}
    for service, port in busy.items():
        log(f"✗ {service} port {port}: still in use", Colors.WARNING)
    if not busy:
        ports = ", ".join(str(port) for port in SERVICES.values())
        log(f"✓ Services stopped, ports {ports} free", Colors.GREEN)

def wait_for_health(max_retries=30):
    log("\n[3/3] Verifying services...", Colors.BLUE, bold=True)
    all_healthy = True
    for service in HTTP_SERVICES:
        port = SERVICES[service]
        log(f"Checking {service} on port {port}...", end=" ")
        for _ in range(max_retries):
            try:
                with urllib.request.urlopen(f"http://localhost:{port}/health", timeout=1) as resp:
                    if json.load(resp).get("status") == "ok":
                        log("HEALTHY", Colors.GREEN)
                        break
            except (urllib.error.URLError, OSError, ValueError):
                pass
            time.sleep(1)
        else:
            log("TIMEOUT/FAILED", Colors.FAIL)
            all_healthy = False
    return all_healthy

# --- Main ---

def main():
    parser = argparse.ArgumentParser(description="Cleanup ports and start (or stop) the storefront stack")
    parser.add_argument("--no-build", action="store_true", help="Skip rebuilding Docker images")
    parser.add_argument("--stop", action="store_true", help="Stop the stack and check its ports are free")
    parser.add_argument("--logs", action="store_true", help="Follow logs after starting")
    args = parser.parse_args()

    if args.stop:
        stop_docker()
        return

    clean_ports()
    start_docker(no_build=args.no_build)
    if not wait_for_health():
        sys.exit(1)

    log("\n✓ ALL SERVICES RUNNING", Colors.GREEN, bold=True)
    log(f"- API Gateway: {Colors.BLUE}http://localhost:3000{Colors.ENDC}")

    if args.logs:
        subprocess.run(["docker", "compose", "logs", "-f"])
    else:
        log(f"Stop all: {Colors.BOLD}python start_storefront.py --stop{Colors.ENDC}")

if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        log("\nAborted by user.", Colors.WARNING)
        sys.exit(0)
