# client.py - TSP query tool: send a cookie, print the server's epoch-ms time and round trip
import argparse,logging,random,socket,time
from protocol import DEFAULT_PORT,REPLY_SIZE,MalformedPacket,TimeRequest,TimeReply

log=logging.getLogger("tsp.client")

def query(server,port=DEFAULT_PORT,cookie=None,timeout=2.0,sock=None):
    """One request/reply exchange. Returns (reply, rtt_seconds); raises socket.timeout."""
    if cookie is None: cookie=random.getrandbits(64)
    own=sock is None
    if own: sock=socket.socket(socket.AF_INET,socket.SOCK_DGRAM)   # socket()
    try:
        sock.settimeout(timeout)
        t1=time.monotonic()
        sock.sendto(TimeRequest(cookie).pack(),(server,port))      # sendto()
        deadline=t1+timeout
        while True:
            data,_=sock.recvfrom(REPLY_SIZE+1)                     # recvfrom()
            rtt=time.monotonic()-t1
            try: rep=TimeReply.unpack(data)
            except MalformedPacket: rep=None
            if rep is not None and rep.cookie==cookie: return rep,rtt
            log.debug("ignoring stray %d-byte datagram",len(data))   # late reply to an earlier cookie
            left=deadline-time.monotonic()
            if left<=0: raise socket.timeout("no matching reply")
            sock.settimeout(left)
    finally:
        if own: sock.close()

def run(server,port,count,interval,timeout,cookie=None):
    sock=socket.socket(socket.AF_INET,socket.SOCK_DGRAM)
    ok=lost=0
    print(f"Querying {server}:{port}  count={count}  interval={interval}s")
    try:
        for i in range(count):
            c=cookie if cookie is not None else random.getrandbits(64)
            try: rep,rtt=query(server,port,c,timeout,sock)
            except socket.timeout: lost+=1; print(f"#{i+1} cookie={c:#018x} timeout"); continue
            ok+=1
            when=time.strftime("%Y-%m-%d %H:%M:%S",time.gmtime(rep.time_ms//1000))
            print(f"#{i+1} cookie={c:#018x}  server={rep.time_ms} ({when}.{rep.time_ms%1000:03d}Z)  rtt={rtt*1000:.2f}ms")
            if i+1<count: time.sleep(interval)
    finally:
        sock.close()
    print(f"\nreplies={ok}  lost={lost}")
    return ok

def main(argv=None):
    ap=argparse.ArgumentParser(prog="tsp-query",description="query a TSP time server")
    ap.add_argument("--server",default="127.0.0.1")
    ap.add_argument("--port",type=int,default=DEFAULT_PORT)
    ap.add_argument("--count",type=int,default=1)
    ap.add_argument("--interval",type=float,default=1.0)
    ap.add_argument("--timeout",type=float,default=2.0)
    ap.add_argument("--cookie",type=lambda v:int(v,0),help="fixed cookie (default: random per request)")
    ap.add_argument("-v","--verbose",action="store_true")
    args=ap.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(name)s | %(message)s",datefmt="%H:%M:%S")
    return 0 if run(args.server,args.port,args.count,args.interval,args.timeout,args.cookie) else 1

if __name__=="__main__": raise SystemExit(main())
