# server.py - TSP UDP time responder: recvfrom() -> stamp -> sendto(), one datagram at a time
# Socket calls: socket() setsockopt() bind() recvfrom() sendto()
import argparse,logging,logging.handlers,os,signal,socket,sys
from protocol import DEFAULT_PORT,REQ_SIZE,MalformedPacket,decode,encode,build_reply,now_ms

log=logging.getLogger("tsp.server")
BUF_SIZE=2048      # larger than REQ_SIZE so oversized datagrams show their real length
POLL=0.5           # recv timeout, lets stop() end the loop
SYSLOG_ADDR="/dev/log"

def handle_datagram(data,now,strict=False):
    """Reply bytes for one datagram, or None when it must be dropped."""
    try: req=decode(data)
    except MalformedPacket: return None
    if strict and not req.valid(): return None
    return encode(build_reply(req,now))

class TimeServer:
    def __init__(self,port,host="0.0.0.0",strict=False,clock=now_ms):
        self.host=host; self.port=port; self.strict=strict; self.clock=clock
        self.sock=None; self.running=False
        self.served=0; self.dropped=0

    def bind(self):
        if self.sock is not None: return self               # already bound
        s=socket.socket(socket.AF_INET,socket.SOCK_DGRAM)        # socket()
        try:
            s.setsockopt(socket.SOL_SOCKET,socket.SO_REUSEADDR,1)  # rebind right after a restart
            s.bind((self.host,self.port))                         # bind()
        except OSError:
            s.close(); raise
        s.settimeout(POLL)
        self.sock=s; self.running=True
        log.info("started time sync server on %s:%d%s",*self.address,"  (strict)" if self.strict else "")
        return self

    @property
    def address(self): return self.sock.getsockname()

    def handle(self,data,addr):
        if len(data)!=REQ_SIZE:
            self.dropped+=1; log.warning("%s:%d sent %d bytes, expected %d; dropped",addr[0],addr[1],len(data),REQ_SIZE)
            return
        now=self.clock()
        out=handle_datagram(data,now,self.strict)
        if out is None:
            self.dropped+=1; log.warning("%s:%d bad tag/version %r; dropped",addr[0],addr[1],data[:4])
            return
        try: self.sock.sendto(out,addr)                           # sendto()
        except OSError as e:
            self.dropped+=1; log.warning("sendto %s:%d failed: %s",addr[0],addr[1],e)
            return
        self.served+=1
        log.debug("%s:%d cookie=%s time=%d",addr[0],addr[1],data[8:16].hex(),now)

    def serve_forever(self):
        if self.sock is None: self.bind()
        try:
            while self.running:
                try: data,addr=self.sock.recvfrom(BUF_SIZE)      # recvfrom()
                except socket.timeout: continue
                except ConnectionError as e:                      # ICMP error from an earlier reply
                    log.warning("recvfrom: %s",e); continue
                except OSError as e:
                    log.error("socket failed: %s",e); raise
                self.handle(data,addr)
        finally:
            self.running=False
            log.info("stopped, served=%d dropped=%d",self.served,self.dropped)

    def stop(self): self.running=False

    def close(self):
        self.stop()
        if self.sock is not None: self.sock.close(); self.sock=None

    def __enter__(self): return self
    def __exit__(self,*exc): self.close()

def port_arg(v):
    p=int(v)
    if not 0<p<65536: raise argparse.ArgumentTypeError(f"port out of range: {v}")
    return p

def setup_logging(verbose=False,syslog=False):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(name)s | %(message)s",datefmt="%H:%M:%S")
    if not syslog: return False
    try:
        os.stat(SYSLOG_ADDR)                  # newer SysLogHandler hides a failed connect
        h=logging.handlers.SysLogHandler(address=SYSLOG_ADDR,facility=logging.handlers.SysLogHandler.LOG_DAEMON)
    except OSError as e:
        log.warning("syslog unavailable at %s: %s; logging to stderr only",SYSLOG_ADDR,e)
        return False
    h.setFormatter(logging.Formatter("tsp-server[%(process)d]: %(message)s"))
    logging.getLogger("tsp").addHandler(h)
    return True

def main(argv=None):
    ap=argparse.ArgumentParser(prog="tsp-server",description="UDP time sync responder")
    ap.add_argument("port",type=port_arg,help=f"UDP listen port (e.g. {DEFAULT_PORT})")
    ap.add_argument("--host",default="0.0.0.0")
    ap.add_argument("--strict",action="store_true",help="drop requests whose tag/version is not TSP v1")
    ap.add_argument("--syslog",action="store_true",help="also log to the local syslog daemon")
    ap.add_argument("-v","--verbose",action="store_true")
    args=ap.parse_args(argv)
    setup_logging(args.verbose,args.syslog)
    srv=TimeServer(args.port,args.host,args.strict)
    try: srv.bind()
    except OSError as e:
        log.error("cannot bind %s:%d: %s",args.host,args.port,e); return 1
    signal.signal(signal.SIGTERM,lambda *_: srv.stop())
    try: srv.serve_forever()
    except KeyboardInterrupt: pass
    except OSError: return 1
    finally: srv.close()
    return 0

if __name__=="__main__": sys.exit(main())
