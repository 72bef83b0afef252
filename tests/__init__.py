# posengine test suite
