"""
deploy
======

Everything that installs or removes software on the MicroK8s cluster:
the cluster itself, cert-manager, the ClusterIssuer, Harbor's storage and
the Harbor Helm release.
"""
