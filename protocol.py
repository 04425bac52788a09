# protocol.py - TSP wire codec: 16-byte request, 24-byte reply, epoch-ms clock
import struct, time

DEFAULT_PORT=12300
PROTO_TAG=b"TSP"; PROTO_VERSION=1
HDR_FMT="!3sB4sQ"          # tag, version, unused, cookie = 16 bytes
REPLY_FMT=HDR_FMT+"Q"      # header + ms since 1970 = 24 bytes
REQ_SIZE=struct.calcsize(HDR_FMT); REPLY_SIZE=struct.calcsize(REPLY_FMT)
U64=2**64

class MalformedPacket(ValueError):
    pass

def now_ms(): return time.time_ns()//1_000_000   # truncates sub-ms part

def _check(tag,version,unused,*u64):
    if not isinstance(tag,bytes) or not isinstance(unused,bytes): raise MalformedPacket("tag/unused must be bytes")
    if len(tag)!=3 or len(unused)!=4: raise MalformedPacket("tag/unused width")
    if not isinstance(version,int) or not 0<=version<256: raise MalformedPacket(f"bad version {version}")
    for v in u64:
        if not isinstance(v,int) or not 0<=v<U64: raise MalformedPacket(f"{v} does not fit in 64 bits")

class TimeRequest:
    def __init__(self,cookie=0,tag=PROTO_TAG,version=PROTO_VERSION,unused=b"\0"*4):
        self.tag=tag; self.version=version; self.unused=unused; self.cookie=cookie

    def valid(self):
        """True for a TSP v1 tag; the server only checks this in strict mode."""
        return self.tag==PROTO_TAG and self.version==PROTO_VERSION

    def pack(self):
        _check(self.tag,self.version,self.unused,self.cookie)
        return struct.pack(HDR_FMT,self.tag,self.version,self.unused,self.cookie)

    @classmethod
    def unpack(cls,d):
        if len(d)!=REQ_SIZE: raise MalformedPacket(f"bad size {len(d)}")
        tag,ver,unused,cookie=struct.unpack(HDR_FMT,d)
        return cls(cookie,tag,ver,unused)

    def __eq__(self,o):
        return type(o) is type(self) and vars(o)==vars(self)

    def __repr__(self):
        return f"{type(self).__name__}(tag={self.tag!r}, version={self.version}, cookie={self.cookie:#x})"

class TimeReply(TimeRequest):
    def __init__(self,cookie=0,tag=PROTO_TAG,version=PROTO_VERSION,unused=b"\0"*4,time_ms=0):
        super().__init__(cookie,tag,version,unused); self.time_ms=time_ms

    @property
    def header(self): return TimeRequest(self.cookie,self.tag,self.version,self.unused)

    def pack(self):
        _check(self.tag,self.version,self.unused,self.cookie,self.time_ms)
        return struct.pack(REPLY_FMT,self.tag,self.version,self.unused,self.cookie,self.time_ms)

    @classmethod
    def unpack(cls,d):
        if len(d)!=REPLY_SIZE: raise MalformedPacket(f"bad size {len(d)}")
        tag,ver,unused,cookie,t=struct.unpack(REPLY_FMT,d)
        return cls(cookie,tag,ver,unused,t)

    def __repr__(self):
        return f"{super().__repr__()[:-1]}, time_ms={self.time_ms})"

def decode(data): return TimeRequest.unpack(bytes(data))
def encode(reply): return reply.pack()

def build_reply(req,now):
    # header fields are echoed as received, nothing is checked
    return TimeReply(req.cookie,req.tag,req.version,req.unused,now)
