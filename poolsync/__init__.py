"""poolsync: Kubernetes endpoints -> BIG-IP pool membership reconciler.

Runs one polling loop per configured instance and keeps the target pool's
member list equal to the ready endpoints of a Kubernetes service:
 - a shared instance registry that rejects two instances on one pool
 - minimal add/remove updates instead of replace-all
 - graceful start / update / stop with delayed pool cleanup
"""
